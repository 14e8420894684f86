"""Central enum-like definitions to avoid typos in privilege resource/action strings.
Extend cautiously; never rename pairs silently. Deactivate the old privilege and create a new one.
"""
from __future__ import annotations
from typing import Dict, List, Tuple

WILDCARD = ('all', 'all')

# Editing the shared catalog affects every organization; these pairs belong to
# platform administrators and are never handed out by registration or the grant API.
PLATFORM_PAIRS: Tuple[Tuple[str, str], ...] = (
    ('privilege', 'create'),
    ('privilege', 'update'),
    ('privilege', 'delete'),
)

RESOURCE_ACTIONS: Dict[str, List[str]] = {
    'branch': ['create', 'read', 'update', 'delete'],
    'user': ['create', 'read', 'update', 'delete'],
    'bill': ['create', 'read', 'update', 'delete'],
    'item': ['create', 'read', 'update', 'delete'],
    'client': ['create', 'read', 'update', 'delete'],
    'tax_rate': ['create', 'read'],
    'privilege': ['create', 'read', 'update', 'delete', 'grant', 'revoke'],
}

_DESCRIPTIONS = {
    'create': 'Create new {plural}',
    'read': 'View {singular} information',
    'update': 'Update {singular} information',
    'delete': 'Delete {plural}',
    'grant': 'Grant privileges to users',
    'revoke': 'Revoke privileges from users',
}


def _describe(resource: str, action: str) -> str:
    singular = resource.replace('_', ' ')
    return _DESCRIPTIONS[action].format(singular=singular, plural=f'{singular}s')


def build_default_privileges() -> List[Dict[str, str]]:
    rows: List[Dict[str, str]] = []
    for resource, actions in RESOURCE_ACTIONS.items():
        for action in actions:
            rows.append({
                'name': f'{resource}.{action}',
                'description': _describe(resource, action),
                'resource': resource,
                'action': action,
            })
    rows.append({
        'name': 'all',
        'description': 'Access every branch of the organization',
        'resource': WILDCARD[0],
        'action': WILDCARD[1],
    })
    return rows


DEFAULT_PRIVILEGES = build_default_privileges()


def is_platform_pair(resource: str, action: str) -> bool:
    return (resource, action) in PLATFORM_PAIRS
