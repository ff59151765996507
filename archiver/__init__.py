"""Frigate clip archiver: ships finished person-detection clips to object storage"""

APP_VERSION = "1.0.0"
