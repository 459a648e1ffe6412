from .constants import Permission as P
from .permission_set import PermissionSet

DEFAULT_PERMISSIONS = PermissionSet({
    P.VIEW_CHANNELS,
    P.SEND_MESSAGES,
    P.EMBED_LINKS,
    P.ATTACH_FILES,
    P.ADD_REACTIONS,
    P.CONNECT,
    P.SPEAK,
})

MODERATOR_PERMISSIONS = PermissionSet({
    P.VIEW_CHANNELS,
    P.KICK_MEMBERS,
    P.SEND_MESSAGES,
    P.EMBED_LINKS,
    P.ATTACH_FILES,
    P.ADD_REACTIONS,
    P.USE_AI_FEATURES,
    P.MANAGE_MESSAGES,
    P.CONNECT,
    P.SPEAK,
    P.STREAM,
    P.MUTE_MEMBERS,
    P.DEAFEN_MEMBERS,
})

ADMIN_PERMISSIONS = PermissionSet.all()

# Role ladder seeded into every new group, highest authority first.
DEFAULT_ROLES: list[dict] = [
    {
        "name": "Admin",
        "color": "#E91E63",
        "position": 100,
        "permissions": ADMIN_PERMISSIONS,
        "is_default": False,
    },
    {
        "name": "Moderator",
        "color": "#2196F3",
        "position": 50,
        "permissions": MODERATOR_PERMISSIONS,
        "is_default": False,
    },
    {
        "name": "Technical",
        "color": "#4CAF50",
        "position": 30,
        "permissions": DEFAULT_PERMISSIONS | PermissionSet({P.USE_AI_FEATURES}),
        "is_default": False,
    },
    {
        "name": "Non-Technical",
        "color": "#FF9800",
        "position": 20,
        "permissions": DEFAULT_PERMISSIONS,
        "is_default": False,
    },
    {
        "name": "Everyone",
        "color": "#9E9E9E",
        "position": 0,
        "permissions": DEFAULT_PERMISSIONS,
        "is_default": True,
    },
]

OWNER_ROLE_NAME = "Admin"
EVERYONE_ROLE_NAME = "Everyone"
