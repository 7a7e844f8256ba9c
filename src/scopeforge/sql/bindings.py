"""Well-known binding names shared by every statement compiler."""

ACTOR_IDS = "actor_ids"
ID = "id"
IDS = "ids"
PARENT_ID = "parent_id"
ORGANIZATION_ID = "organization_id"
IS_OWNER = "is_owner"
LIMIT = "limit"
OFFSET = "offset"
