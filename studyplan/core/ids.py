import uuid

PLAN_PREFIX = "plan"
SUBJECT_PREFIX = "subj"
TOPIC_PREFIX = "topic"


def new_id(prefix: str) -> str:
    return f"{prefix}_{uuid.uuid4().hex}"

"""
Opaque identifiers for study plans, subjects and the topics created
during reconciliation. Prefixes only help when reading logs; nothing
parses them back.
"""
