"""Human-readable message catalog.

Errors carry a stable kind; the text shown to people is looked up here by
key and locale so it can be translated without touching the lending rules.
"""

from typing import Optional

DEFAULT_LOCALE = "en"

MESSAGES: dict[str, dict[str, str]] = {
    "en": {
        "missing_argument": "{name} is required",
        "invalid_loan_period": "Loan period must be a whole number of days from 1 to {max_days}",
        "invalid_argument": "Invalid value for {name}",
        "patron_not_found": "Cannot borrow: patron {patron_id} does not exist",
        "patron_not_active": "Cannot borrow: patron is not active (status: {status})",
        "borrow_limit_reached": (
            "Cannot borrow: patron already has {open_loans} open loans (limit {limit})"
        ),
        "item_not_found": "Cannot borrow: item {item_id} does not exist",
        "no_copies_available": "Cannot borrow: no copies available for item {item_id}",
        "loan_not_found": "Loan {loan_id} does not exist",
        "already_returned": "Loan {loan_id} is already returned",
        "inventory_rejected": (
            "Inventory adjustment for item {item_id} was rejected; nothing was changed"
        ),
        "transaction_failed": "The {operation} operation could not be committed; nothing was changed",
    },
    "id": {
        "missing_argument": "{name} wajib diisi",
        "invalid_loan_period": "Lama peminjaman harus berupa jumlah hari dari 1 sampai {max_days}",
        "invalid_argument": "Nilai {name} tidak valid",
        "patron_not_found": "Tidak dapat meminjam: anggota {patron_id} tidak ditemukan",
        "patron_not_active": "Tidak dapat meminjam: anggota tidak active (status: {status})",
        "borrow_limit_reached": (
            "Tidak dapat meminjam: anggota sudah memiliki {open_loans} pinjaman aktif "
            "(batas {limit})"
        ),
        "item_not_found": "Tidak dapat meminjam: buku {item_id} tidak ditemukan",
        "no_copies_available": "Tidak ada kopi yang tersedia untuk buku {item_id}",
        "loan_not_found": "Peminjaman {loan_id} tidak ditemukan",
        "already_returned": "Peminjaman {loan_id} sudah dikembalikan",
        "inventory_rejected": (
            "Penyesuaian stok untuk buku {item_id} ditolak; tidak ada yang diubah"
        ),
        "transaction_failed": "Operasi {operation} gagal disimpan; tidak ada yang diubah",
    },
}

SUPPORTED_LOCALES = tuple(MESSAGES)


def get_message(key: str, locale: Optional[str] = None, **params) -> str:
    """Render the message for key in locale, falling back to English."""
    catalog = MESSAGES.get((locale or DEFAULT_LOCALE).lower(), MESSAGES[DEFAULT_LOCALE])
    template = catalog.get(key) or MESSAGES[DEFAULT_LOCALE][key]
    return template.format(**params)
