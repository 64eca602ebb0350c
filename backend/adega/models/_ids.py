from __future__ import annotations

import uuid


def new_id() -> str:
    """Primary keys are UUID4 strings (36 chars)."""
    return str(uuid.uuid4())
