"""Decision services: scanning, safety, auto-fix, admission, trends, experiments."""
