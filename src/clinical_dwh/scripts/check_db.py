"""
Check the database connection and list staging / warehouse tables.
Run with: python -m clinical_dwh.scripts.check_db
"""
from sqlalchemy import text
from sqlalchemy.exc import SQLAlchemyError
from clinical_dwh.core.config import STAGE_PREFIX
from clinical_dwh.core.db import get_engine, table_names

def main():
    try:
        engine = get_engine()
        tables = table_names(engine)

        print("Database Connection: SUCCESS\n")
        if not tables:
            print("  No tables found")
            return

        staging = [t for t in tables if t.startswith(STAGE_PREFIX)]
        warehouse = [t for t in tables if not t.startswith(STAGE_PREFIX)]
        with engine.connect() as conn:
            for title, group in (("Staging tables", staging), ("Warehouse tables", warehouse)):
                print(f"{title}:")
                for table in group:
                    count = conn.execute(text(f"SELECT COUNT(*) FROM {table}")).scalar_one()
                    print(f"  - {table}: {count} rows")

    except (SQLAlchemyError, ValueError) as e:
        print("Database Connection: FAILED")
        print(f"Error: {e}")

if __name__ == "__main__":
    main()
