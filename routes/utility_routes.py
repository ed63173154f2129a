from flask import make_response, stream_with_context
from models import db, Log
from datetime import datetime
import csv
import io
import logging
import urllib.parse

def _encode_row(writer, output, row):
    writer.writerow(row)
    chunk = output.getvalue().encode('utf-8')
    output.seek(0)
    output.truncate(0)
    return chunk

def export_report_csv(rows, filename, headers):
    """
    Stream report rows as an Excel-compatible CSV download.

    Args:
        rows: iterable of dicts keyed by the header names
        filename: base name of the file, a timestamp and .csv are appended
        headers: ordered column names

    The file starts with a UTF-8 BOM and a 'sep=;' hint and uses ';' as the
    delimiter so Excel opens it without an import dialog.
    """
    def generate_csv():
        output = io.StringIO()
        writer = csv.writer(output, delimiter=';')

        yield b'\xef\xbb\xbf' # UTF-8 BOM
        output.write('sep=;\n')
        yield _encode_row(writer, output, headers)

        for row in rows:
            yield _encode_row(writer, output, [_format_cell(row.get(key)) for key in headers])

    full_filename = f"{filename}_{datetime.now().strftime('%Y%m%d_%H%M%S')}.csv"

    db.session.add(Log(action="EXPORT_REPORT", description=f"Exported report: {full_filename}"))
    db.session.commit()
    logging.info(f"Streaming CSV export {full_filename}")

    response = make_response(stream_with_context(generate_csv()))
    ascii_filename = full_filename.encode('ascii', 'replace').decode()
    encoded_filename = urllib.parse.quote(full_filename)
    response.headers["Content-Disposition"] = f"attachment; filename=\"{ascii_filename}\"; filename*=UTF-8''{encoded_filename}"
    response.headers["Content-type"] = "text/csv; charset=UTF-8"
    return response

def _format_cell(value):
    if value is None:
        return ''
    if isinstance(value, bool):
        return 'Yes' if value else 'No'
    return value
