"""Configuration settings for the seat planner."""
import os

DATABASE_URL = os.getenv("SEATPLANNER_DATABASE_URL", "sqlite:///./seat_planner.db")

LOG_LEVEL = os.getenv("SEATPLANNER_LOG_LEVEL", "INFO")

# Exports (seat maps as spreadsheets)
EXPORT_DIR = os.getenv("SEATPLANNER_EXPORT_DIR", os.path.join(os.getcwd(), "exports"))

# Retry bounds under contention
MAX_CLAIM_ATTEMPTS = int(os.getenv("SEATPLANNER_MAX_CLAIM_ATTEMPTS", "3"))
MAX_ALLOCATION_ROUNDS = int(os.getenv("SEATPLANNER_MAX_ALLOCATION_ROUNDS", "3"))

# Layout: rooms wider than this get a center aisle after this many columns
AISLE_AFTER_COLUMN = 3

# Preferences a student may ask for
ACCESSIBILITY_NEEDS = ("front_seat", "middle_seat", "aisle_seat")

# Tags a seat may carry; the last two are only ever set by admins
SEAT_FEATURES = ACCESSIBILITY_NEEDS + ("wheelchair_access", "near_exit")
