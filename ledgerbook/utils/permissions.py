"""
Permission Vocabulary

Static (module, action) dictionary for the endpoints that check permissions
instead of bare roles. Every role starts from its defaults below; an admin can
grant a user extra permissions on top of them, never fewer.

DO NOT rename existing module/action pairs once deployed, grants are stored
by name. Add new permissions instead.
"""

from typing import Dict, FrozenSet, List, Tuple

PERMISSIONS_DICTIONARY = {
    "material_issues": {
        "view": "View material issues",
        "create": "Issue material to an expense account",
        "update": "Edit material issues",
        "delete": "Cancel material issues",
    },

    "inventory": {
        "opening_stock": "Post opening stock",
        "adjust": "Post stock adjustments",
    },
}

ALL_PERMISSIONS: FrozenSet[Tuple[str, str]] = frozenset(
    (module, action) for module, actions in PERMISSIONS_DICTIONARY.items() for action in actions
)

ROLE_PERMISSIONS: Dict[str, FrozenSet[Tuple[str, str]]] = {
    "admin": ALL_PERMISSIONS,
    "accountant": ALL_PERMISSIONS,
    "clerk": frozenset({("material_issues", "view"), ("material_issues", "create")}),
    "viewer": frozenset({("material_issues", "view")}),
}


def role_permissions(role: str) -> FrozenSet[Tuple[str, str]]:
    return ROLE_PERMISSIONS.get(role, frozenset())


def list_permissions() -> List[dict]:
    return [
        {"module": module, "action": action, "description": description}
        for module, actions in PERMISSIONS_DICTIONARY.items()
        for action, description in actions.items()
    ]
