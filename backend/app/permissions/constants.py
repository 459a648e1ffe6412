from enum import Enum


class Permission(str, Enum):
    """Capabilities a group role can grant.

    The value of each member is also the key used in the stored JSON
    permission map of a role.
    """

    # General
    VIEW_CHANNELS = "VIEW_CHANNELS"
    MANAGE_CHANNELS = "MANAGE_CHANNELS"
    MANAGE_ROLES = "MANAGE_ROLES"
    MANAGE_GROUP = "MANAGE_GROUP"
    KICK_MEMBERS = "KICK_MEMBERS"
    BAN_MEMBERS = "BAN_MEMBERS"

    # Channel
    SEND_MESSAGES = "SEND_MESSAGES"
    EMBED_LINKS = "EMBED_LINKS"
    ATTACH_FILES = "ATTACH_FILES"
    ADD_REACTIONS = "ADD_REACTIONS"
    USE_AI_FEATURES = "USE_AI_FEATURES"
    MANAGE_MESSAGES = "MANAGE_MESSAGES"
    MENTION_EVERYONE = "MENTION_EVERYONE"

    # Voice
    CONNECT = "CONNECT"
    SPEAK = "SPEAK"
    STREAM = "STREAM"
    MUTE_MEMBERS = "MUTE_MEMBERS"
    DEAFEN_MEMBERS = "DEAFEN_MEMBERS"
    MOVE_MEMBERS = "MOVE_MEMBERS"


ALL_PERMISSIONS: list[str] = [p.value for p in Permission]

PERMISSION_CATEGORIES: dict[str, list[Permission]] = {
    "General": [
        Permission.VIEW_CHANNELS,
        Permission.MANAGE_CHANNELS,
        Permission.MANAGE_ROLES,
        Permission.MANAGE_GROUP,
        Permission.KICK_MEMBERS,
        Permission.BAN_MEMBERS,
    ],
    "Channel": [
        Permission.SEND_MESSAGES,
        Permission.EMBED_LINKS,
        Permission.ATTACH_FILES,
        Permission.ADD_REACTIONS,
        Permission.USE_AI_FEATURES,
        Permission.MANAGE_MESSAGES,
        Permission.MENTION_EVERYONE,
    ],
    "Voice": [
        Permission.CONNECT,
        Permission.SPEAK,
        Permission.STREAM,
        Permission.MUTE_MEMBERS,
        Permission.DEAFEN_MEMBERS,
        Permission.MOVE_MEMBERS,
    ],
}

PERMISSION_LABELS: dict[Permission, str] = {
    Permission.VIEW_CHANNELS: "View Channels",
    Permission.MANAGE_CHANNELS: "Manage Channels",
    Permission.MANAGE_ROLES: "Manage Roles",
    Permission.MANAGE_GROUP: "Manage Group",
    Permission.KICK_MEMBERS: "Kick Members",
    Permission.BAN_MEMBERS: "Ban Members",
    Permission.SEND_MESSAGES: "Send Messages",
    Permission.EMBED_LINKS: "Embed Links",
    Permission.ATTACH_FILES: "Attach Files",
    Permission.ADD_REACTIONS: "Add Reactions",
    Permission.USE_AI_FEATURES: "Use AI Features",
    Permission.MANAGE_MESSAGES: "Manage Messages",
    Permission.MENTION_EVERYONE: "Mention @everyone",
    Permission.CONNECT: "Connect",
    Permission.SPEAK: "Speak",
    Permission.STREAM: "Video",
    Permission.MUTE_MEMBERS: "Mute Members",
    Permission.DEAFEN_MEMBERS: "Deafen Members",
    Permission.MOVE_MEMBERS: "Move Members",
}
