"""Check that the configured Supabase project is reachable."""
import os
import sys

sys.path.insert(0, os.path.dirname(os.path.dirname(os.path.abspath(__file__))))

from ridedispatch.config import settings
from ridedispatch.database import get_supabase


def main() -> int:
    print("--- CONFIG CHECK ---")
    print("URL:", settings.supabase_url)
    print("Key Length:", len(settings.supabase_key) if settings.supabase_key else "MISSING")

    if not settings.supabase_url.startswith("https://"):
        print("ERROR: SUPABASE_URL is missing or does not start with 'https://'")
        return 1

    print("\n--- ATTEMPTING CONNECTION ---")
    try:
        result = get_supabase().table("rides").select("id, status").limit(1).execute()
    except Exception as e:
        print("Supabase returned an error:")
        print(e)
        return 1

    print("SUCCESS! Connected to Supabase.")
    print("Data received:", result.data)
    return 0


if __name__ == "__main__":
    sys.exit(main())
