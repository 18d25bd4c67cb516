"""User-facing strings for the command loop, keyed by language code.

``resolve(language, key)`` falls back to English, then to the key itself,
so a missing translation shows up as its identifier instead of failing.
"""

FALLBACK_LANGUAGE = "EN"

LANGUAGE_NAMES = {
    "EN": "English",
    "VI": "Tiếng Việt",
    "DE": "Deutsch",
}

MESSAGES = {
    "EN": {
        "welcome": "Welcome to Finance Manager. Type 'help' for commands.",
        "first_run": "No save file found, starting with default categories.",
        "startup_processed": "Processed schedules and interest up to {date}.",
        "added_tx": "✓ Added {amount:.2f} to {category}",
        "allocated": "✓ Allocated {amount:.2f} across {count} categories",
        "alloc_updated": "✓ Allocations updated, {category} gets {pct:.2f}%",
        "schedule_added": "✓ Added schedule: {desc}",
        "schedule_removed": "✓ Removed schedule {index}",
        "no_schedules": "No scheduled transactions",
        "every_days": "every {n} days",
        "monthly_on_day": "monthly on day {n}",
        "auto_alloc_target": "auto-alloc",
        "schedule_line": "  [{index}] {amount:.2f} {desc}, next {next}, {target}, {note}",
        "periodicity_monthly": "monthly",
        "periodicity_annual": "annual",
        "interest_line": "  - {category}: {rate:g}% {periodicity}, start {start}, applied through {applied}",
        "interest_set": "✓ Interest for {category}: {rate}% {periodicity}",
        "interest_removed": "✓ Removed interest for {category}",
        "interest_not_found": "No interest rule for {category}",
        "no_interest": "No interest rules",
        "processed": "✓ Processed up to {date}: {scheduled} scheduled, {interest} interest transactions",
        "preview_header": "Preview up to {date} (nothing is changed):",
        "nothing_due": "Nothing due",
        "summary_title": "==== Account Summary ====",
        "total_balance": "Total balance: {amount:.2f}",
        "category_balances": "Category balances:",
        "allocations": "Allocations (%):",
        "interest_rules": "Interest rules:",
        "schedules": "Scheduled transactions: {count}",
        "recent_transactions": "Recent transactions (last {count}):",
        "saved": "✓ Saved to {path}",
        "save_failed": "Save did not complete, your data is still in memory: {path}",
        "loaded": "✓ Loaded {count} transactions from {path}",
        "load_failed": "Save file not found or unreadable: {path}",
        "settings_title": "--- Settings ---",
        "label_auto_save": "Auto-save: {value}",
        "label_auto_process": "Process schedules & interest at startup: {value}",
        "label_language": "Language: {value}",
        "on": "ON",
        "off": "OFF",
        "available_languages": "Available languages: {languages}",
        "settings_updated": "✓ Settings updated",
        "unknown_language": "Unknown language: {code}",
        "undone": "✓ Undid the last change",
        "nothing_to_undo": "Nothing to undo",
        "reset_confirm": "This deletes the save file and all data. Type 'yes' to confirm: ",
        "reset_done": "✓ Reset complete, starting over with default categories",
        "reset_cancelled": "Reset cancelled",
        "invalid_input": "Invalid input: {error}",
        "goodbye": "Goodbye!",
    },
    "VI": {
        "welcome": "Chào mừng đến với Finance Manager. Gõ 'help' để xem lệnh.",
        "first_run": "Không tìm thấy tệp lưu, bắt đầu với các danh mục mặc định.",
        "startup_processed": "Đã xử lý lịch và tiền lãi đến ngày {date}.",
        "added_tx": "✓ Đã thêm {amount:.2f} vào {category}",
        "allocated": "✓ Đã phân bổ {amount:.2f} vào {count} danh mục",
        "alloc_updated": "✓ Đã cập nhật phân bổ, {category} nhận {pct:.2f}%",
        "schedule_added": "✓ Đã thêm lịch: {desc}",
        "schedule_removed": "✓ Đã xóa lịch {index}",
        "no_schedules": "Không có giao dịch định kỳ",
        "every_days": "mỗi {n} ngày",
        "monthly_on_day": "hàng tháng vào ngày {n}",
        "auto_alloc_target": "tự phân bổ",
        "schedule_line": "  [{index}] {amount:.2f} {desc}, lần tới {next}, {target}, {note}",
        "periodicity_monthly": "hàng tháng",
        "periodicity_annual": "hàng năm",
        "interest_line": "  - {category}: {rate:g}% {periodicity}, bắt đầu {start}, đã áp dụng đến {applied}",
        "interest_set": "✓ Lãi suất cho {category}: {rate}% {periodicity}",
        "interest_removed": "✓ Đã xóa lãi suất cho {category}",
        "interest_not_found": "Không có lãi suất cho {category}",
        "no_interest": "Không có quy tắc lãi suất",
        "processed": "✓ Đã xử lý đến {date}: {scheduled} giao dịch định kỳ, {interest} giao dịch lãi",
        "preview_header": "Xem trước đến {date} (không thay đổi gì):",
        "nothing_due": "Không có gì đến hạn",
        "summary_title": "==== Tổng quan tài khoản ====",
        "total_balance": "Tổng số dư: {amount:.2f}",
        "category_balances": "Số dư theo danh mục:",
        "allocations": "Phân bổ (%):",
        "interest_rules": "Quy tắc lãi suất:",
        "schedules": "Giao dịch định kỳ: {count}",
        "recent_transactions": "Giao dịch gần đây ({count} cuối):",
        "saved": "✓ Đã lưu vào {path}",
        "save_failed": "Lưu không thành công, dữ liệu vẫn còn trong bộ nhớ: {path}",
        "loaded": "✓ Đã tải {count} giao dịch từ {path}",
        "load_failed": "Không tìm thấy hoặc không đọc được tệp lưu: {path}",
        "settings_title": "--- Cài đặt ---",
        "label_auto_save": "Tự động lưu: {value}",
        "label_auto_process": "Xử lý lịch & lãi khi khởi động: {value}",
        "label_language": "Ngôn ngữ: {value}",
        "on": "BẬT",
        "off": "TẮT",
        "available_languages": "Ngôn ngữ có sẵn: {languages}",
        "settings_updated": "✓ Đã cập nhật cài đặt",
        "unknown_language": "Ngôn ngữ không xác định: {code}",
        "undone": "✓ Đã hoàn tác thay đổi cuối",
        "nothing_to_undo": "Không có gì để hoàn tác",
        "reset_confirm": "Thao tác này xóa tệp lưu và toàn bộ dữ liệu. Gõ 'yes' để xác nhận: ",
        "reset_done": "✓ Đã đặt lại, bắt đầu với các danh mục mặc định",
        "reset_cancelled": "Đã hủy đặt lại",
        "invalid_input": "Dữ liệu không hợp lệ: {error}",
        "goodbye": "Tạm biệt!",
    },
    "DE": {
        "welcome": "Willkommen beim Finance Manager. 'help' zeigt alle Befehle.",
        "first_run": "Keine Speicherdatei gefunden, starte mit Standardkategorien.",
        "startup_processed": "Zeitpläne und Zinsen bis {date} verarbeitet.",
        "added_tx": "✓ {amount:.2f} zu {category} hinzugefügt",
        "allocated": "✓ {amount:.2f} auf {count} Kategorien verteilt",
        "alloc_updated": "✓ Verteilung aktualisiert, {category} erhält {pct:.2f}%",
        "schedule_added": "✓ Zeitplan hinzugefügt: {desc}",
        "schedule_removed": "✓ Zeitplan {index} entfernt",
        "no_schedules": "Keine wiederkehrenden Buchungen",
        "every_days": "alle {n} Tage",
        "monthly_on_day": "monatlich am {n}.",
        "auto_alloc_target": "automatisch verteilt",
        "schedule_line": "  [{index}] {amount:.2f} {desc}, nächste {next}, {target}, {note}",
        "periodicity_monthly": "monatlich",
        "periodicity_annual": "jährlich",
        "interest_line": "  - {category}: {rate:g}% {periodicity}, Beginn {start}, angewendet bis {applied}",
        "interest_set": "✓ Zins für {category}: {rate}% {periodicity}",
        "interest_removed": "✓ Zins für {category} entfernt",
        "interest_not_found": "Kein Zins für {category}",
        "no_interest": "Keine Zinsregeln",
        "processed": "✓ Bis {date} verarbeitet: {scheduled} geplante, {interest} Zinsbuchungen",
        "preview_header": "Vorschau bis {date} (es wird nichts geändert):",
        "nothing_due": "Nichts fällig",
        "summary_title": "==== Kontoübersicht ====",
        "total_balance": "Gesamtsaldo: {amount:.2f}",
        "category_balances": "Salden nach Kategorie:",
        "allocations": "Verteilung (%):",
        "interest_rules": "Zinsregeln:",
        "schedules": "Wiederkehrende Buchungen: {count}",
        "recent_transactions": "Letzte Buchungen (letzte {count}):",
        "saved": "✓ Gespeichert in {path}",
        "save_failed": "Speichern fehlgeschlagen, die Daten sind noch im Speicher: {path}",
        "loaded": "✓ {count} Buchungen aus {path} geladen",
        "load_failed": "Speicherdatei fehlt oder ist nicht lesbar: {path}",
        "settings_title": "--- Einstellungen ---",
        "label_auto_save": "Automatisch speichern: {value}",
        "label_auto_process": "Zeitpläne & Zinsen beim Start verarbeiten: {value}",
        "label_language": "Sprache: {value}",
        "on": "AN",
        "off": "AUS",
        "available_languages": "Verfügbare Sprachen: {languages}",
        "settings_updated": "✓ Einstellungen aktualisiert",
        "unknown_language": "Unbekannte Sprache: {code}",
        "undone": "✓ Letzte Änderung rückgängig gemacht",
        "nothing_to_undo": "Nichts rückgängig zu machen",
        "reset_confirm": "Dies löscht die Speicherdatei und alle Daten. Zum Bestätigen 'yes' eingeben: ",
        "reset_done": "✓ Zurückgesetzt, starte mit Standardkategorien",
        "reset_cancelled": "Zurücksetzen abgebrochen",
        "invalid_input": "Ungültige Eingabe: {error}",
        "goodbye": "Auf Wiedersehen!",
    },
}


def available_languages() -> list[str]:
    return sorted(MESSAGES)


def resolve(language: str, key: str) -> str:
    table = MESSAGES.get((language or "").upper(), {})
    if key in table:
        return table[key]
    return MESSAGES[FALLBACK_LANGUAGE].get(key, key)
