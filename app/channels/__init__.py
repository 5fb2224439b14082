"""Chat channels: notification composition, Telegram and inbound handling."""
