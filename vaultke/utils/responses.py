"""
Response Envelope
Every endpoint answers with {success, data|error[, message]}
"""

from flask import jsonify


def success_response(data=None, status=200, message=None):
    body = {'success': True, 'data': data if data is not None else {}}
    if message:
        body['message'] = message
    return jsonify(body), status


def error_response(error, status=400):
    return jsonify({'success': False, 'error': str(error)}), status


def paginated(collection, items, total, limit, offset, **extra):
    """Data payload for list endpoints: the named collection plus pagination"""
    data = {
        collection: items,
        'pagination': {
            'total': total,
            'limit': limit,
            'offset': offset,
            'hasMore': offset + len(items) < total,
        },
    }
    data.update(extra)
    return data
