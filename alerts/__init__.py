"""Alert system module."""
from alerts.engine import AlertEngine, EvaluationResult
from alerts.rules_manager import RulesManager
from alerts.channels import ChannelRouter, ConsoleChannel, FileChannel, DiscordChannel, TelegramChannel
