import os
import sys

# Add project root to path
sys.path.append(os.getcwd())

from bus_tracker.config import settings
from bus_tracker.services.location_relay.auth import create_driver_token


def main():
    driver_id = sys.argv[1] if len(sys.argv) > 1 else settings.tracker.TRACKER_DRIVER_ID

    if not settings.auth.AUTH_JWT_SECRET:
        print("JWT_SECRET is not set")
        sys.exit(1)

    token = create_driver_token(
        driver_id,
        settings.auth.AUTH_JWT_SECRET,
        algorithm=settings.auth.AUTH_JWT_ALGORITHM,
        ttl_days=settings.auth.AUTH_TOKEN_TTL_DAYS,
    )
    print(f"Token for driver {driver_id}:")
    print(token)


if __name__ == "__main__":
    main()
