"""Home-care equipment rental CRM backend."""
