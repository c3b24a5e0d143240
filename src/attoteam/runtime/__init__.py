"""Team runtime: worker lifecycle, watchdog and team controller."""
