"""
CSV exports for the admin console.

Rows are streamed so large tables never sit in memory. Cells that a
spreadsheet would evaluate as a formula are prefixed with a quote.
"""
import csv

from django.http import StreamingHttpResponse

from .models import CareerApplication, Message, User

FORMULA_PREFIXES = ('=', '+', '-', '@', '\t', '\r')


class _Echo:
    def write(self, value):
        return value


def _cell(value):
    if value is None:
        return ''
    text = str(value)
    if text.startswith(FORMULA_PREFIXES):
        return f"'{text}"
    return text


def csv_response(filename, header, rows):
    writer = csv.writer(_Echo())

    def stream():
        yield writer.writerow(header)
        for row in rows:
            yield writer.writerow([_cell(value) for value in row])

    response = StreamingHttpResponse(stream(), content_type='text/csv')
    response['Content-Disposition'] = f'attachment; filename="{filename}"'
    return response


def users_csv():
    rows = (
        User.objects.order_by('date_joined')
        .values_list('id', 'full_name', 'email', 'role', 'account_status', 'date_joined')
        .iterator()
    )
    return csv_response('users.csv', ['id', 'full_name', 'email', 'role', 'account_status', 'joined_at'], rows)


def messages_csv():
    rows = (
        Message.objects.order_by('-created_at')
        .values_list('id', 'conversation_id', 'sender_id', 'sender__email', 'content', 'created_at')
        .iterator()
    )
    return csv_response(
        'messages.csv',
        ['id', 'conversation_id', 'sender_id', 'sender_email', 'content', 'created_at'],
        rows,
    )


def careers_csv():
    rows = (
        CareerApplication.objects.order_by('-created_at')
        .values_list('id', 'name', 'email', 'phone', 'position', 'status', 'created_at', 'cover_letter')
        .iterator()
    )
    return csv_response(
        'career_applications.csv',
        ['id', 'name', 'email', 'phone', 'position', 'status', 'applied_at', 'cover_letter'],
        rows,
    )
