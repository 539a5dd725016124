"""Voice provider integration: dispatch adapters, outcome codes and completion webhooks."""
