# app/models/audit_log.py
# In-memory trail of every catalog write made by apply runs (newest last).
from typing import List, Dict, Any, Optional
import time
import threading

MAX_ENTRIES = 5000

audit_log: List[Dict[str, Any]] = []
lock = threading.Lock()

def add_audit_entry(action: str, listing_id: Optional[int], details: str, user: str = "apply"):
    entry = {
        "action": action,
        "listing_id": listing_id or None,
        "user": user,
        "timestamp": time.strftime("%Y-%m-%d %H:%M:%S"),
        "details": details,
    }
    with lock:
        audit_log.append(entry)
        if len(audit_log) > MAX_ENTRIES:
            del audit_log[: len(audit_log) - MAX_ENTRIES]

def get_audit_log(listing_id: Optional[int] = None) -> List[Dict[str, Any]]:
    with lock:
        entries = list(audit_log)
    if listing_id:
        entries = [e for e in entries if e.get("listing_id") == listing_id]
    return entries

def clear_audit_log():
    with lock:
        audit_log.clear()
