"""Telegram bot that deploys a BPB panel worker to Cloudflare."""
