"""定时任务."""
