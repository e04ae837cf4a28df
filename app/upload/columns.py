# app/upload/columns.py
# Fixed sheet layout shared by export and import. Column order is part of the
# file format: files exported by older builds must keep decoding.

COLUMNS = {
    "listing_id": 0,
    "title": 1,
    "description": 2,
    "status": 3,
    "tags": 4,
    "variation": 5,
    "property_name_1": 6,
    "property_option_1": 7,
    "property_name_2": 8,
    "property_option_2": 9,
    "price": 10,
    "currency_code": 11,
    "quantity": 12,
    "sku": 13,
    "variation_price": 14,
    "variation_quantity": 15,
    "variation_sku": 16,
    "materials": 17,
    "shipping_profile_id": 18,
    "processing_min": 19,
    "processing_max": 20,
    "product_id": 21,
    "property_id_1": 22,
    "property_option_ids_1": 23,
    "property_id_2": 24,
    "property_option_ids_2": 25,
}

HEADERS = [
    "Listing ID",
    "Title",
    "Description",
    "Status",
    "Tags",
    "Variation",
    "Property Name 1",
    "Property Option 1",
    "Property Name 2",
    "Property Option 2",
    "Price",
    "Currency Code",
    "Quantity",
    "SKU (DELETE=delete listing)",
    "Variation Price",
    "Variation Quantity",
    "Variation SKU (DELETE=delete variation)",
    "Materials",
    "Shipping Profile ID",
    "Processing Min (days)",
    "Processing Max (days)",
    "Product ID (DO NOT EDIT)",
    "Property ID 1 (DO NOT EDIT)",
    "Property Option IDs 1 (DO NOT EDIT)",
    "Property ID 2 (DO NOT EDIT)",
    "Property Option IDs 2 (DO NOT EDIT)",
]

COLUMN_COUNT = len(HEADERS)
MIN_ROW_COLUMNS = 15      # shorter rows can't hold listing + variation data
MIN_RECORDS = 2           # header + one data row
HEADER_SEARCH_ROWS = 10

NO_VARIATION_LABEL = "N/A"
DELETE_SENTINEL = "DELETE"

INFO_ROWS = [
    "INFO: One row per variation. Listing fields (title, description, status, tags, materials, "
    "shipping, processing) only need to be filled on the first row of each listing.",
    "IMPORTANT: Do not edit the columns marked DO NOT EDIT. They link rows back to existing "
    "products and property options.",
    "DELETE BEHAVIOR: Put DELETE in the SKU column to delete a whole listing, or in the "
    "Variation SKU column to delete a single variation.",
    "UPLOAD BEHAVIOR: Leave Listing ID empty (or 0) to create a new listing. Variations you "
    "leave out of the file are kept as they are.",
]
