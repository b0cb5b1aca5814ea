"""Support ticket lifecycle and live-chat notification service."""
