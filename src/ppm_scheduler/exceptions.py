class PPMSchedulerError(Exception):
    """Base class for errors raised by ppm-scheduler."""


class NotificationError(PPMSchedulerError):
    """A notification could not be delivered to its recipients."""
