import enum


class ChannelType(str, enum.Enum):
    text = "text"
    voice = "voice"
    announcement = "announcement"


class FeedEvent(str, enum.Enum):
    insert = "INSERT"
    update = "UPDATE"
    delete = "DELETE"


class AITask(str, enum.Enum):
    sentiment = "sentiment"
    simplify = "simplify"
    summarize = "summarize"
    analyze_file = "analyze_file"


class AIAction(str, enum.Enum):
    summarize = "summarize"
    simplify = "simplify"


class NotificationType(str, enum.Enum):
    message = "message"
    mention = "mention"
    reaction = "reaction"
    group_invite = "group_invite"
    role_update = "role_update"
    channel_invite = "channel_invite"
    file_share = "file_share"
    system = "system"
