"""External integrations: acquirers, inbound and outbound webhooks, attribution."""
