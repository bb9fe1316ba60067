"""
Pipeline exceptions

Platform transport errors live in socialhub.integrations.base, webhook
authentication errors in socialhub.core.webhook_security.
"""


class PipelineError(Exception):
    """Base class for pipeline processing errors"""
    pass


class MalformedPayloadError(PipelineError):
    """Webhook payload is missing its entry list"""
    pass


class PublishError(PipelineError):
    """A post could not be published"""
    pass


class PublishValidationError(PublishError):
    """Post can never be published as-is; retrying will not help"""
    pass


class ChannelNotActiveError(PublishValidationError):
    def __init__(self, message: str = "Channel not active or not found"):
        super().__init__(message)


class DispatchError(PipelineError):
    """An outbound message could not be dispatched"""
    pass


class TokenRefreshError(PipelineError):
    """Channel token renewal failed"""
    pass
