#!/usr/bin/env python3
"""English Coach: UserPromptSubmit hook.

Sends the submitted prompt to `claude -p` with a JSON schema, turns the
structured reply into a short lesson and shows it to the user as a
systemMessage (the model never sees it). Every lesson is also appended
to ~/.claude/logs/english-lessons.log.

Config:       [english] in ~/.claude/statusline.toml (optional)
"""

import sys, json, os, subprocess, shutil, logging
from datetime import datetime
from pathlib import Path

import statusline

log = logging.getLogger("english_correction")

# ═══════════════════════ CONFIG ═══════════════════════

LANGUAGE = "Korean"
MODEL = "sonnet"
TIMEOUT = 120              # claude -p can be slow
LESSON_LOG = Path("~/.claude/logs/english-lessons.log").expanduser()
LOCK_ENV = "REWRITER_LOCK"  # Set for the nested claude call so this hook doesn't recurse
RULE = "─" * 49
FAILED = "Failed to generate lesson."

CATEGORIES = ["grammar", "vocabulary", "style", "spelling", "word_order"]

SCHEMA = {
    "type": "object",
    "properties": {
        "enhanced_prompt": {
            "type": "string",
            "description": "The improved prompt preserving original meaning",
        },
        "has_corrections": {
            "type": "boolean",
            "description": "Whether the original prompt had any issues to improve",
        },
        "praise": {"type": "string"},
        "corrections": {
            "type": "array",
            "items": {
                "type": "object",
                "properties": {
                    "original": {"type": "string"},
                    "suggestion": {"type": "string"},
                    "category": {"type": "string", "enum": CATEGORIES},
                    "explanation": {"type": "string"},
                },
                "required": ["original", "suggestion", "category", "explanation"],
            },
            "description": "Gentle improvement suggestions, max 3 items",
        },
        "tip": {"type": "string"},
        "is_korean_only": {
            "type": "boolean",
            "description": "True if the original prompt is entirely in the learner's language with no English",
        },
        "english_translation": {
            "type": "string",
            "description": "Natural English translation. Only provided when is_korean_only is true.",
        },
        "notable_expressions": {
            "type": "array",
            "items": {
                "type": "object",
                "properties": {
                    "expression": {"type": "string"},
                    "explanation": {"type": "string"},
                },
                "required": ["expression", "explanation"],
            },
            "description": "1-3 notable expressions worth highlighting, always provided",
        },
    },
    "required": [
        "enhanced_prompt", "has_corrections", "praise", "corrections", "tip",
        "is_korean_only", "english_translation", "notable_expressions",
    ],
}

INSTRUCTIONS = """\
You are a supportive, encouraging English coach for a {lang} developer. Analyze the prompt below and return structured JSON.

Rules:
1. enhanced_prompt: Rewrite to be clear, natural, professional English. Preserve the original intent exactly. If the prompt is code-only or already perfect English, return it unchanged.
2. has_corrections: true if you made any meaningful improvements, false if the prompt was already correct or is pure code/commands.
3. praise: One specific, genuine praise sentence in {lang} about what the user did well. Find something positive even when there are corrections.
4. corrections: Up to 3 gentle suggestions, each with original, suggestion, category ({cats}) and a one-sentence explanation in {lang} (max 20 words), framed as "this sounds more natural", never "this is wrong".
5. tip: One memorable tip in {lang} (1 sentence, max 30 words) about the most useful pattern. With no corrections, share a useful English expression.
6. is_korean_only: true if the whole prompt is written in {lang} (technical terms like API or git don't count as English).
7. english_translation: When is_korean_only is true, a natural, professional English translation of the prompt. Otherwise an empty string.
8. notable_expressions: Up to 3 advanced-level expressions with a brief {lang} explanation (max 20 words). For English input, phrases the user chose well; for {lang} input, interesting translation choices. Skip when the prompt is too short.

Focus on patterns {lang} speakers commonly struggle with: articles (a/the), prepositions, singular/plural, tense consistency, word order.

<PROMPT>
{prompt}
</PROMPT>"""

def load_config(path=None):
    global LANGUAGE, MODEL, TIMEOUT, LESSON_LOG
    e = statusline.section(statusline.read_config(path), "english")
    if isinstance(e.get("language"), str) and e["language"]:
        LANGUAGE = e["language"]
    if isinstance(e.get("model"), str) and e["model"]:
        MODEL = e["model"]
    TIMEOUT = statusline.opt_num(e, "timeout", TIMEOUT, lo=1)
    if isinstance(e.get("log_path"), str) and e["log_path"]:
        LESSON_LOG = Path(e["log_path"]).expanduser()

# ═══════════════════════ CLAUDE CALL ═══════════════════════

def build_prompt(prompt, lang=None):
    return INSTRUCTIONS.format(lang=lang or LANGUAGE, cats=", ".join(CATEGORIES), prompt=prompt)

def ask_claude(text, timeout=None):
    """Run claude -p with the schema. structured_output dict or None."""
    exe = shutil.which("claude")
    if not exe:
        log.debug("claude binary not on PATH")
        return None
    cmd = [exe, "--model", MODEL, "--output-format", "json",
           "--no-session-persistence", "--json-schema", json.dumps(SCHEMA), "-p", text]
    env = dict(os.environ, **{LOCK_ENV: "1"})
    try:
        r = subprocess.run(cmd, capture_output=True, text=True, env=env,
                           timeout=TIMEOUT if timeout is None else timeout)
    except (OSError, subprocess.SubprocessError) as e:
        log.debug("claude -p failed: %s", e)
        return None
    if r.returncode != 0:
        log.debug("claude -p exit %s: %s", r.returncode, r.stderr[:500])
        return None
    try:
        out = json.loads(r.stdout).get("structured_output")
    except (ValueError, AttributeError) as e:
        log.debug("claude -p output unparsable: %s", e)
        return None
    return out if isinstance(out, dict) else None

# ═══════════════════════ FORMATTING ═══════════════════════

def fmt_corrections(items):
    return "\n".join(
        f"[{c.get('category', '')}] \n\"{c.get('original', '')}\"\n"
        f"→ \"{c.get('suggestion', '')}\"\n♫ {c.get('explanation', '')}\n"
        for c in items or [] if isinstance(c, dict))

def fmt_notable(items):
    return "\n".join(
        f"\"{n.get('expression', '')}\"\n→ {n.get('explanation', '')}\n"
        for n in items or [] if isinstance(n, dict))

def format_lesson(prompt, res):
    """Lesson text: translation, corrections or praise-only layout."""
    if not res:
        return FAILED

    praise = res.get("praise", "")
    tip = res.get("tip", "")
    notable = fmt_notable(res.get("notable_expressions")).rstrip("\n")
    fixes = res.get("has_corrections") is True
    translation = res.get("english_translation") or ""

    if res.get("is_korean_only") is True and translation:
        rewritten = translation
    elif fixes:
        rewritten = res.get("enhanced_prompt", "")
    else:
        return (f"👍 \"{praise}\"\n\n🧙 {prompt}\n\n"
                f"📝 [사용된 표현]\n{notable}\n\n💡 {tip}")

    parts = [f"🤖 \"{praise}\"", f"🧙 {prompt}\n→ {rewritten}"]
    if fixes:
        parts.append("✨ 더 자연스러운 표현\n" + fmt_corrections(res.get("corrections")).rstrip("\n"))
    parts.append(f"📝 사용된 표현\n{notable}")
    parts.append(f"💡 {tip}")
    return "\n\n".join(parts)

def banner(lesson):
    return f"\n★ English Lesson {RULE[:32]}\n{lesson}\n{RULE}"

def append_log(lesson, path=None, now=None):
    """Append a timestamped lesson. Never raises."""
    path = path or LESSON_LOG
    ts = (now or datetime.now()).strftime("%Y-%m-%d %H:%M")
    try:
        path.parent.mkdir(parents=True, exist_ok=True)
        with open(path, "a", encoding="utf-8") as f:
            f.write(f"\n[{ts}]\n{lesson}\n")
    except OSError as e:
        log.debug("lesson log %s not writable: %s", path, e)

# ═══════════════════════ MAIN ═══════════════════════

def main(argv=None):
    if os.environ.get(LOCK_ENV):
        return 0

    try:
        statusline.load_config()
        statusline.setup_logging(logger=log)
        load_config()
    except Exception:
        log.exception("config failed")

    raw = statusline.read_stdin()
    try:
        prompt = json.loads(raw).get("prompt")
    except (ValueError, AttributeError):
        log.debug("stdin is not a JSON object: %r", raw[:200])
        return 0
    if not isinstance(prompt, str) or not prompt.strip():
        return 0

    lesson = format_lesson(prompt, ask_claude(build_prompt(prompt)))
    append_log(lesson)
    statusline.write_stdout(json.dumps({"systemMessage": banner(lesson)}, ensure_ascii=False))
    return 0

if __name__ == "__main__":
    sys.exit(main())
