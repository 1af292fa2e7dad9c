"""Core enums and state machines shared by every PRIVCA component."""
