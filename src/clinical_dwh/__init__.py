"""Clinical disorder-event data warehouse ETL."""
