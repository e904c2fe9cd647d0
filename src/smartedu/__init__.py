"""SmartEdu backend: per-user profile sync, optimistic feed and notifications."""
