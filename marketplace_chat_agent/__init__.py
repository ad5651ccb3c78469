# marketplace_chat_agent
# -----------------------------------------------------------------------------
# Marketplace-Chat-Agent mit Playwright/CDP
# - Chatliste scannen, Chats nacheinander öffnen
# - Nachrichten extrahieren (buyer/seller), Rauschen filtern
# - Antwort über externen Webhook anfordern, Vorschau mit Abbruch
# - Antwort (Text/Bild) in den Composer einfügen und senden
# -----------------------------------------------------------------------------

AGENT_VERSION = "1.0.0"
