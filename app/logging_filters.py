# --- Global log sanitizer: HTML error pages and oversized payloads ---------------
import logging, re

_HTML_SIG_RE = re.compile(r'(?is)<!DOCTYPE html|<html[^>]*>')
_TITLE_RE    = re.compile(r'(?is)<title[^>]*>(.*?)</title>')
_TAG_RE      = re.compile(r'(?is)<[^>]+>')
_SCRIPT_RE   = re.compile(r'(?is)<(script|style)[^>]*>.*?</\1>')

MAX_LOG_CHARS = 4000

def strip_tags(s: str) -> str:
    s = _SCRIPT_RE.sub('', s)
    s = _TAG_RE.sub(' ', s)
    return re.sub(r'\s+', ' ', s).strip()

def looks_like_html(s: str) -> bool:
    return isinstance(s, str) and bool(_HTML_SIG_RE.search(s))

def summarize_html(s: str, limit: int = 200) -> str:
    title = None
    m = _TITLE_RE.search(s)
    if m:
        title = strip_tags(m.group(1))
    preview = title or strip_tags(s)[:limit]
    return f"{preview} [HTML {len(s)} chars trimmed]"

def trim_payload(s: str, limit: int = MAX_LOG_CHARS) -> str:
    """Shorten a log message: HTML gets summarized, anything else gets cut."""
    if looks_like_html(s):
        return summarize_html(s)
    if len(s) > limit:
        return f"{s[:limit]}… [{len(s) - limit} chars trimmed]"
    return s

class PayloadTrimFilter(logging.Filter):
    """Replace HTML blobs and huge payload dumps (CSV bodies, inventory JSON) with a short summary."""
    def filter(self, record: logging.LogRecord) -> bool:
        try:
            msg = record.getMessage()
        except (TypeError, ValueError):
            return True
        if isinstance(msg, str) and len(msg) > 200:
            trimmed = trim_payload(msg)
            if trimmed != msg:
                record.msg = trimmed
                record.args = ()
        return True

def install(names=("", "uvicorn", "uvicorn.error")) -> None:
    """Attach the filter once to the root and uvicorn loggers."""
    for _name in names:
        lg = logging.getLogger(_name)
        if not any(isinstance(f, PayloadTrimFilter) for f in lg.filters):
            lg.addFilter(PayloadTrimFilter())
# --------------------------------------------------------------------------------
