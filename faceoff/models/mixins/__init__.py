from .timestamp import TimestampMixin as TimestampMixin, utcnow as utcnow
