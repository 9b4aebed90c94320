"""Data models."""
from models.enums import Interval, NotificationStatus, Severity, TriggerType, Aggregation
from models.metrics import LogEntry, MetricSnapshot, LogBatch
from models.alerts import AlertRule, DeliveryResult, NotificationRecord
from models.historical import HistoricalConfig, ValidationError
from models.agents import Agent
