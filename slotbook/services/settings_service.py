from sqlalchemy.orm import Session
from slotbook.models.setting import Setting

# Policy fields an administrator may override per product line.
INT_FIELDS = ("buffer_minutes", "min_advance_hours", "granularity_minutes", "cancellation_window_hours")
BOOL_FIELDS = ("auto_confirm_privileged", "pending_blocks")
STR_FIELDS = ("operating_days", "timezone")
POLICY_FIELDS = INT_FIELDS + BOOL_FIELDS + STR_FIELDS


def _key(product_line: str, name: str) -> str:
    return f"POLICY.{product_line}.{name}"


def get_policy_overrides(db: Session, product_line: str) -> dict:
    prefix = _key(product_line, "")
    rows = db.query(Setting).filter(Setting.key.like(prefix + "%")).all()
    out = {}
    for s in rows:
        name = s.key[len(prefix):]
        if name not in POLICY_FIELDS:
            continue
        if name in STR_FIELDS:
            if s.str_value is not None:
                out[name] = s.str_value
        elif s.int_value is not None:
            out[name] = int(s.int_value)
    return out


def set_policy_overrides(db: Session, product_line: str, values: dict, actor_id: str | None = None) -> dict:
    """Upsert overrides; a None value removes the override. Caller commits."""
    for name, value in values.items():
        if name not in POLICY_FIELDS:
            raise ValueError(f"unknown policy field: {name}")
        if name in INT_FIELDS and value is not None and int(value) < 0:
            raise ValueError(f"{name} must be >= 0")
        if name == "granularity_minutes" and value is not None and int(value) <= 0:
            raise ValueError("granularity_minutes must be > 0")
        key = _key(product_line, name)
        s = db.get(Setting, key)
        if value is None:
            if s:
                db.delete(s)
            continue
        if not s:
            s = Setting(key=key, int_value=None, str_value=None)
            db.add(s)
        if name in STR_FIELDS:
            s.str_value = str(value)
        else:
            s.int_value = int(value)
        s.updated_by = actor_id
    db.flush()
    return get_policy_overrides(db, product_line)
