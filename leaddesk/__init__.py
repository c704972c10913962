"""LeadDesk: human-agent console for a WhatsApp lead bot."""

__version__ = "0.1.0"
