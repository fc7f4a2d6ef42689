"""
Sprint whitelist filter.

A task title may carry one or more bracketed sprint tags, e.g.
"Review homework [19]" or "Fix [19][7]".  The policy:

  - empty whitelist      → every task is eligible (tagged or not)
  - non-empty whitelist  → eligible iff one of the title's tags is listed;
                           untagged titles are NOT eligible
"""

import re

_SPRINT_TAG_RE = re.compile(r"\[(\d+)\]")


def extract_sprint_tags(title: str) -> list[str]:
    """Return every bracketed numeric tag in *title*, in order."""
    if not title:
        return []
    return _SPRINT_TAG_RE.findall(title)


def is_eligible(title: str, whitelist) -> bool:
    """Decide whether a task with *title* may be auto-assigned."""
    allowed = {str(item).strip() for item in (whitelist or []) if str(item).strip()}
    if not allowed:
        return True
    return any(tag in allowed for tag in extract_sprint_tags(title))
