"""
Import restaurant tables from a CSV file
CSV format: table_number,capacity,properties
Properties are separated by semicolons.
Example: T1,4,window;quiet
"""

import csv
import sys
from datetime import date

import availability
import store
from app import app, db
from errors import InvalidInput
from models import RestaurantTable


def parse_table_row(row):
    """Turn one CSV row into table fields, or raise InvalidInput"""
    table_number = (row.get('table_number') or '').strip().upper()
    if not table_number:
        raise InvalidInput('table_number is empty')

    try:
        capacity = int((row.get('capacity') or '').strip())
    except ValueError:
        raise InvalidInput(f"Table {table_number} has a non-numeric capacity")
    if capacity < 1:
        raise InvalidInput(f"Table {table_number} must seat at least one guest")

    properties = [p.strip().lower() for p in (row.get('properties') or '').split(';') if p.strip()]
    return {'table_number': table_number, 'capacity': capacity, 'properties': properties}


def import_tables_from_csv(filename='tables.csv'):
    """Import tables from CSV file"""

    with app.app_context():
        try:
            with open(filename, 'r', encoding='utf-8') as file:
                reader = csv.DictReader(file)

                if not reader.fieldnames or 'table_number' not in reader.fieldnames \
                        or 'capacity' not in reader.fieldnames:
                    print("❌ Error: CSV must have columns 'table_number' and 'capacity'")
                    return False

                existing_numbers = {t.table_number for t in RestaurantTable.query.all()}
                tables_to_add = []
                line_num = 1

                for row in reader:
                    line_num += 1
                    try:
                        fields = parse_table_row(row)
                    except InvalidInput as e:
                        print(f"⚠️  Warning: Skipping line {line_num}: {e}")
                        continue

                    if fields['table_number'] in existing_numbers:
                        print(f"⚠️  Warning: Table {fields['table_number']} already exists, skipping")
                        continue

                    existing_numbers.add(fields['table_number'])
                    tables_to_add.append(RestaurantTable(**fields))

                if tables_to_add:
                    db.session.add_all(tables_to_add)
                    db.session.commit()
                    print(f"\n✅ Successfully imported {len(tables_to_add)} tables!")

                    print("\nSample tables:")
                    for table in tables_to_add[:5]:
                        tags = ', '.join(table.properties) or 'standard'
                        print(f"  {table.table_number}: {table.capacity} seats ({tags})")

                    if len(tables_to_add) > 5:
                        print(f"  ... and {len(tables_to_add) - 5} more")

                    return True
                else:
                    print("⚠️  No new tables to import")
                    return False

        except FileNotFoundError:
            print(f"❌ Error: File '{filename}' not found")
            print("\nCreate a CSV file with this format:")
            print("table_number,capacity,properties")
            print("T1,4,window;quiet")
            print("T2,2,outdoor")
            return False

        except Exception as e:
            print(f"❌ Error: {str(e)}")
            db.session.rollback()
            return False


def show_table_stats(day=None):
    """Display occupancy statistics for a day"""
    day = day or date.today()
    with app.app_context():
        tables = store.fetch_tables()
        bookings = store.fetch_bookings_for_date(day)
        stats = availability.compute_occupancy_stats(tables, bookings)
        seats = sum(t.capacity for t in tables)

        print("\n" + "="*50)
        print(f"TABLE STATISTICS - {availability.format_date(day)}")
        print("="*50)
        print(f"Total tables:      {stats.total} ({seats} seats)")
        print(f"Available:         {stats.available}")
        print(f"Booked:            {stats.booked}")
        print(f"Occupied:          {stats.occupied}")
        print(f"Occupancy:         {stats.occupancy_percent}%")
        print("="*50)
        return stats


def create_sample_csv(filename='tables_sample.csv'):
    """Create a sample CSV file"""
    sample_data = [
        ['table_number', 'capacity', 'properties'],
        ['T1', '2', 'window'],
        ['T2', '2', 'window;quiet'],
        ['T3', '4', ''],
        ['T4', '4', 'outdoor'],
        ['T5', '6', 'outdoor;shade'],
        ['T6', '8', 'private']
    ]

    with open(filename, 'w', newline='', encoding='utf-8') as file:
        writer = csv.writer(file)
        writer.writerows(sample_data)

    print(f"✅ Created sample file: {filename}")
    print("Edit this file with your real floor plan, then run:")
    print(f"python seed_tables.py {filename}")
    return filename


if __name__ == '__main__':
    print("="*50)
    print("TABLE BOOKING - TABLE IMPORT UTILITY")
    print("="*50)
    print()

    if len(sys.argv) > 1:
        if sys.argv[1] == '--sample':
            create_sample_csv()
        elif sys.argv[1] == '--stats':
            show_table_stats(availability.parse_date(sys.argv[2]) if len(sys.argv) > 2 else None)
        else:
            filename = sys.argv[1]
            print(f"Importing from: {filename}\n")
            if import_tables_from_csv(filename):
                show_table_stats()
    else:
        print("Importing from: tables.csv\n")
        if import_tables_from_csv('tables.csv'):
            show_table_stats()
        else:
            print("\n💡 Need help?")
            print("  Create sample: python seed_tables.py --sample")
            print("  Show stats:    python seed_tables.py --stats [YYYY-MM-DD]")
            print("  Import file:   python seed_tables.py your_file.csv")
