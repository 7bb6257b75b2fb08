from datetime import date, datetime


# Simply returns the current local time as an ISO8601 string with timezone offset.
def now_iso():
    return datetime.now().astimezone().isoformat()

# Today's local date as YYYY-MM-DD, which is what the daily counters are keyed on.
def today_iso():
    return date.today().isoformat()

# Format seconds as HH:MM:SS. This is the one formatter for every timer readout and for durations sent to the
# backend, so the UI and the stored session always agree. Callers round first (floor or ceil); anything fractional
# left over is truncated and negatives clamp to zero.
def format_hms(seconds):
    seconds = max(0, int(seconds))
    h, rem = divmod(seconds, 3600)
    m, s = divmod(rem, 60)
    return f"{h:02d}:{m:02d}:{s:02d}"

# Inverse of format_hms, tolerant of MM:SS and plain seconds. Returns None for anything unparseable.
def parse_hms(text):
    parts = str(text).strip().split(":")
    if not parts or len(parts) > 3:
        return None
    try:
        numbers = [int(p) for p in parts]
    except ValueError:
        return None
    if any(n < 0 for n in numbers):
        return None
    total = 0
    for n in numbers:
        total = total * 60 + n
    return total
