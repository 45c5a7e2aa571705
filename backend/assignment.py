from typing import Optional

from models import Assignment, BaseRule


def determine_assigned_user(rule: BaseRule, last_assigned_index: Optional[int] = None) -> Assignment:
    """
    Decide who the next generated task is assigned to.

    fixed: rule.fixed_user_id (no one if missing).
    rotate: the entry after last_assigned_index, wrapping around; starts at the
        first entry when no index has been persisted yet. An empty rotation
        list means no assignment.
    anything else: no assignment.

    The returned rotation_index is what should be persisted for the next
    sweep. Non-rotating rules hand back the previous pointer unchanged.
    """
    if rule.assign_to == "fixed" and rule.fixed_user_id:
        return Assignment(user_id=rule.fixed_user_id, rotation_index=last_assigned_index)

    if rule.assign_to == "rotate" and rule.rotation_user_ids:
        previous = -1 if last_assigned_index is None else last_assigned_index
        next_index = (previous + 1) % len(rule.rotation_user_ids)
        return Assignment(user_id=rule.rotation_user_ids[next_index], rotation_index=next_index)

    return Assignment(user_id=None, rotation_index=last_assigned_index)
