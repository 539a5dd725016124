"""CRM outcome logging."""
