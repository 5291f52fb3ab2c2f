#!/usr/bin/env python3
"""Claude Code Statusline: single line with ANSI colors.

Session: <id> | <dir> (<branch>) | Context: ▓▓▓░░░░░░░ 31% | 5h limit: ▓░░░░░░░░░ 12% | 4m 7s

Color coding: default <75%, yellow 75-89%, red >=90%.

Config:       ~/.claude/statusline.toml (optional)
Cache:        /tmp/claude-statusline-usage-cache (30s)
Debug log:    ~/.claude/logs/statusline.log (STATUSLINE_DEBUG=1)
"""

import sys, json, os, subprocess, time, shutil, logging, math
import urllib.request, urllib.error
from pathlib import Path

__version__ = "1.2.0"

log = logging.getLogger("statusline")

# ═══════════════════════ CONFIG ═══════════════════════

CONFIG_PATH = Path(os.environ.get("STATUSLINE_CONFIG", "~/.claude/statusline.toml")).expanduser()
USAGE_CACHE = Path("/tmp/claude-statusline-usage-cache")
CREDENTIALS = Path("~/.claude/.credentials.json").expanduser()
DEBUG_LOG = Path("~/.claude/logs/statusline.log").expanduser()
USAGE_URL = "https://api.anthropic.com/api/oauth/usage"

USAGE_TTL = 30             # Cache max age, seconds
FETCH_TIMEOUT = 3          # Usage endpoint timeout, seconds
GIT_TIMEOUT = 2
PCT_WARN = 75              # Yellow from here
PCT_DANGER = 90            # Red from here
BAR_WIDTH = 10
SEP = " | "
DEBUG = os.environ.get("STATUSLINE_DEBUG", "") not in ("", "0")

# Bar glyphs, overridable from [symbols] in the config
SYM_BAR = ("▓", "░")       # (filled, empty)

# ═══════════════════════ TOML CONFIG ═══════════════════════

def read_config(path=None):
    """Read the TOML config as a dict. Missing or broken file gives {}."""
    path = path or CONFIG_PATH
    if not path.exists():
        return {}
    try:
        try:
            import tomllib
        except ImportError:
            import tomli as tomllib  # type: ignore
        with open(path, "rb") as f:
            return tomllib.load(f)
    except (OSError, ValueError) as e:
        log.debug("config %s unreadable: %s", path, e)
        return {}

def opt_num(d, key, default, lo=0):
    """Finite number >= lo from a config section, else default."""
    v = num(d.get(key))
    if v is None or v < lo:
        if key in d:
            log.debug("config %s=%r ignored", key, d[key])
        return default
    return v

def load_config(path=None):
    """Load optional TOML config, override defaults. Wrong types keep the default."""
    global USAGE_TTL, FETCH_TIMEOUT, USAGE_CACHE
    global PCT_WARN, PCT_DANGER, BAR_WIDTH, SYM_BAR, DEBUG

    cfg = read_config(path)

    c = section(cfg, "cache")
    USAGE_TTL = opt_num(c, "usage_ttl", USAGE_TTL)
    FETCH_TIMEOUT = opt_num(c, "fetch_timeout", FETCH_TIMEOUT)
    if isinstance(c.get("usage_path"), str) and c["usage_path"]:
        USAGE_CACHE = Path(c["usage_path"]).expanduser()

    t = section(cfg, "thresholds")
    PCT_WARN = opt_num(t, "warn", PCT_WARN)
    PCT_DANGER = opt_num(t, "danger", PCT_DANGER)

    s = section(cfg, "symbols")
    b = s.get("bar")
    if isinstance(b, list) and len(b) == 2 and all(isinstance(x, str) for x in b):
        SYM_BAR = tuple(b)
    w = opt_num(s, "bar_width", BAR_WIDTH, lo=1)
    BAR_WIDTH = int(w)

    enabled = section(cfg, "debug").get("enabled", False)
    DEBUG = DEBUG or enabled is True

def setup_logging(enabled=None, path=None, logger=None):
    """File-only debug log. Never touches stdout/stderr."""
    enabled = DEBUG if enabled is None else enabled
    lg = logger or log
    lg.handlers.clear()
    lg.propagate = False
    if not enabled:
        lg.addHandler(logging.NullHandler())
        return
    path = path or DEBUG_LOG
    try:
        path.parent.mkdir(parents=True, exist_ok=True)
        h = logging.FileHandler(path, encoding="utf-8")
    except OSError:
        lg.addHandler(logging.NullHandler())
        return
    h.setFormatter(logging.Formatter("%(asctime)s %(name)s %(levelname)s %(message)s"))
    lg.addHandler(h)
    lg.setLevel(logging.DEBUG)

# ═══════════════════════ ANSI ═══════════════════════

R  = "\033[0m"    # Reset
YL = "\033[33m"   # Yellow
RD = "\033[31m"   # Red

def level(pct):
    """Emphasis level: default <75, warning 75-89, danger >=90."""
    if pct >= PCT_DANGER: return "danger"
    if pct >= PCT_WARN: return "warning"
    return "default"

def cpct(pct, txt):
    """Colorize by percentage level. Default level stays uncolored."""
    lv = level(pct)
    if lv == "danger": return f"{RD}{txt}{R}"
    if lv == "warning": return f"{YL}{txt}{R}"
    return txt

# ═══════════════════════ HELPERS ═══════════════════════

def bar(pct, w=None, fc=None, ec=None):
    """Progress bar: floor(pct) * w // 100 filled chars, pct clamped to 0-100."""
    w = BAR_WIDTH if w is None else w
    fc = SYM_BAR[0] if fc is None else fc
    ec = SYM_BAR[1] if ec is None else ec
    pct = int(max(0, min(100, pct)))
    f = pct * w // 100
    return fc * f + ec * (w - f)

def fmt_duration(ms):
    """Format duration: 61m 1s. No hour rollover."""
    s = max(0, int(ms)) // 1000
    return f"{s // 60}m {s % 60}s"

def fmt_pct(p):
    """Print a percentage the way it came in: 42, 42.5."""
    if isinstance(p, float) and p.is_integer():
        return str(int(p))
    return str(p)

def num(v):
    """Finite number or None. Booleans, strings, NaN and Infinity don't count."""
    if isinstance(v, bool) or not isinstance(v, (int, float)):
        return None
    return v if math.isfinite(v) else None

def section(data, key):
    v = data.get(key) if isinstance(data, dict) else None
    return v if isinstance(v, dict) else {}

def parse_event(data):
    """Pull the display fields out of one status event."""
    if not isinstance(data, dict):
        data = {}

    sid = data.get("session_id") or ""
    if not isinstance(sid, str):
        sid = ""
    if sid.endswith(".jsonl"):
        sid = sid[:-len(".jsonl")]

    cwd = section(data, "workspace").get("current_dir") or ""
    if not isinstance(cwd, str):
        cwd = ""
    dir_name = Path(cwd).name if cwd else ""

    used = num(section(data, "context_window").get("used_percentage"))

    dur = num(section(data, "cost").get("total_duration_ms")) or 0

    return {
        "session": sid,
        "current_dir": cwd,
        "dir_name": dir_name,
        "used_pct": used,
        "duration_ms": max(0, int(dur)),
    }

def git_branch(cwd):
    """Current branch of the repo at cwd, or None."""
    if not cwd:
        return None
    try:
        r = subprocess.run(["git", "-C", cwd, "branch", "--show-current"],
                           capture_output=True, text=True, timeout=GIT_TIMEOUT)
    except (OSError, subprocess.SubprocessError) as e:
        log.debug("git branch failed for %s: %s", cwd, e)
        return None
    if r.returncode != 0:
        log.debug("git branch exit %s for %s", r.returncode, cwd)
        return None
    return r.stdout.strip() or None

# ═══════════════════════ CACHE ═══════════════════════

def is_stale(path, ttl, now=None):
    if not path.exists():
        return True
    now = time.time() if now is None else now
    try:
        return now - path.stat().st_mtime > ttl
    except OSError:
        return True

def read_cache(path):
    """Cached usage JSON, or None when missing/empty/malformed."""
    try:
        if path.exists() and path.stat().st_size > 0:
            data = json.loads(path.read_text())
            if isinstance(data, dict):
                return data
            log.debug("cache %s is not an object", path)
    except (OSError, ValueError) as e:
        log.debug("cache %s unreadable: %s", path, e)
    return None

def write_cache(path, body):
    """Atomic overwrite: temp file + rename."""
    tmp = path.with_name(path.name + f".{os.getpid()}.tmp")
    try:
        tmp.write_text(body)
        tmp.replace(path)
        return True
    except OSError as e:
        log.debug("cache write %s failed: %s", path, e)
        try:
            tmp.unlink()
        except OSError:
            pass
        return False

# ═══════════════════════ USAGE FETCH ═══════════════════════

def _token_from_json(raw, allow_raw=False):
    try:
        creds = json.loads(raw)
    except ValueError:
        # Keychain entries may hold the bare token
        return (raw.strip() or None) if allow_raw else None
    if not isinstance(creds, dict):
        return None
    tok = creds.get("accessToken")
    if not tok:
        oauth = creds.get("claudeAiOauth") or {}
        tok = oauth.get("accessToken") if isinstance(oauth, dict) else None
    return tok if isinstance(tok, str) and tok else None

def get_oauth_token(creds_path=None):
    """OAuth token from env var, credentials file or platform keychain."""
    env_tok = os.environ.get("CLAUDE_OAUTH_TOKEN")
    if env_tok:
        return env_tok

    creds_path = creds_path or CREDENTIALS
    try:
        if creds_path.exists():
            tok = _token_from_json(creds_path.read_text())
            if tok:
                return tok
    except OSError as e:
        log.debug("credentials %s unreadable: %s", creds_path, e)

    try:
        if sys.platform == "darwin":
            cmd = ["security", "find-generic-password", "-s", "Claude Code-credentials", "-w"]
        elif sys.platform.startswith("linux") and shutil.which("secret-tool"):
            cmd = ["secret-tool", "lookup", "service", "Claude Code-credentials"]
        else:
            return None
        r = subprocess.run(cmd, capture_output=True, text=True, timeout=5)
    except (OSError, subprocess.SubprocessError) as e:
        log.debug("keychain lookup failed: %s", e)
        return None
    if r.returncode != 0 or not r.stdout.strip():
        return None
    return _token_from_json(r.stdout.strip(), allow_raw=True)

def fetch_usage(token, timeout=None):
    """GET the usage endpoint. Body on HTTP 200 with a JSON object, else None."""
    timeout = FETCH_TIMEOUT if timeout is None else timeout
    req = urllib.request.Request(USAGE_URL, headers={
        "Authorization": f"Bearer {token}",
        "Accept": "application/json",
        "anthropic-beta": "oauth-2025-04-20",
        "User-Agent": f"claude-statusline/{__version__}",
    })
    try:
        with urllib.request.urlopen(req, timeout=timeout) as resp:
            if resp.status != 200:
                log.debug("usage fetch status %s", resp.status)
                return None
            body = resp.read().decode("utf-8")
    except (urllib.error.URLError, OSError, ValueError) as e:
        log.debug("usage fetch failed: %s", e)
        return None
    try:
        if not isinstance(json.loads(body), dict):
            return None
    except ValueError:
        log.debug("usage fetch returned non-JSON body")
        return None
    return body

def refresh_usage(path, token_fn=None, fetch_fn=None):
    """One fetch attempt. Cache is only written on success."""
    token = (token_fn or get_oauth_token)()
    if not token:
        log.debug("no OAuth token, skipping usage fetch")
        return False
    body = (fetch_fn or fetch_usage)(token)
    if body is None:
        return False
    return write_cache(path, body)

def usage(path=None, ttl=None, now=None, token_fn=None, fetch_fn=None):
    """Cache-aside usage JSON. Stale or unreadable cache triggers one fetch."""
    path = path or USAGE_CACHE
    ttl = USAGE_TTL if ttl is None else ttl
    cached = read_cache(path)
    if cached is None or is_stale(path, ttl, now):
        if refresh_usage(path, token_fn, fetch_fn):
            cached = read_cache(path)
    return cached

def five_hour_utilization(path=None, **kw):
    """five_hour.utilization from the usage cache, or None."""
    data = usage(path, **kw)
    if not data:
        return None
    fh = data.get("five_hour")
    return num(fh.get("utilization")) if isinstance(fh, dict) else None

# ═══════════════════════ LINE BUILDER ═══════════════════════

class StatusLine:
    """Collects labeled segments, joins the present ones."""

    def __init__(self, sep=SEP):
        self.sep = sep
        self.parts = []

    def add(self, txt):
        if txt:
            self.parts.append(txt)
        return self

    def render(self):
        return self.sep.join(self.parts)

def ctx_part(pct):
    if pct is None:
        return f"Context: {bar(0)}"
    return cpct(pct, f"Context: {bar(pct)} {fmt_pct(pct)}%")

def limit_part(pct):
    if pct is None:
        return f"5h limit: {bar(0)}"
    p = int(pct)
    return cpct(p, f"5h limit: {bar(p)} {p}%")

def path_part(dir_name, branch):
    if not dir_name:
        return ""
    return f"{dir_name} ({branch})" if branch else dir_name

def build_line(data, branch_fn=None, usage_fn=None):
    """Session, workspace+branch, context bar, 5h bar, duration."""
    ev = parse_event(data)
    branch = (branch_fn or git_branch)(ev["current_dir"]) if ev["dir_name"] else None
    five = (usage_fn or five_hour_utilization)()

    line = StatusLine()
    line.add(f"Session: {ev['session']}" if ev["session"] else "")
    line.add(path_part(ev["dir_name"], branch))
    line.add(ctx_part(ev["used_pct"]))
    line.add(limit_part(five))
    line.add(fmt_duration(ev["duration_ms"]))
    return line.render()

def fallback_line():
    return SEP.join([ctx_part(None), limit_part(None), fmt_duration(0)])

# ═══════════════════════ MAIN ═══════════════════════

def read_stdin():
    """Whole stdin as text. Undecodable bytes are replaced, never raised."""
    try:
        buf = getattr(sys.stdin, "buffer", None)
        if buf is None:
            return sys.stdin.read()
        return buf.read().decode("utf-8", errors="replace")
    except (OSError, ValueError) as e:
        log.debug("stdin unreadable: %s", e)
        return ""

def write_stdout(text):
    """UTF-8 out regardless of the locale the host started us in."""
    buf = getattr(sys.stdout, "buffer", None)
    if buf is None:
        sys.stdout.write(text)
        sys.stdout.flush()
        return
    buf.write(text.encode("utf-8"))
    buf.flush()

def main(argv=None):
    argv = sys.argv[1:] if argv is None else argv
    try:
        load_config()
        setup_logging()
    except Exception:
        # Defaults stay in place; the line must still render
        log.exception("config failed")

    if argv and argv[0] == "--version":
        print(__version__)
        return 0
    if argv and argv[0] == "--usage":
        print(json.dumps(usage(), indent=2))
        return 0

    raw = read_stdin()
    try:
        data = json.loads(raw) if raw.strip() else {}
    except ValueError:
        log.debug("stdin is not JSON: %r", raw[:200])
        data = {}

    try:
        out = build_line(data)
    except Exception:
        log.exception("render failed")
        out = fallback_line()

    write_stdout(out)
    return 0

if __name__ == "__main__":
    sys.exit(main())
