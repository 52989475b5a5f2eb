from flask import current_app, request


def page_args():
    page = request.args.get('page', 1, type=int) or 1
    per_page = request.args.get('limit', current_app.config['DEFAULT_PAGE_SIZE'], type=int) \
        or current_app.config['DEFAULT_PAGE_SIZE']
    per_page = max(1, min(per_page, current_app.config['MAX_PAGE_SIZE']))
    return max(1, page), per_page


def paginate(query):
    page, per_page = page_args()
    return query.paginate(page=page, per_page=per_page, error_out=False)


def page_meta(pagination):
    return {
        'page': pagination.page,
        'limit': pagination.per_page,
        'total': pagination.total,
        'total_pages': pagination.pages,
        'has_next': pagination.has_next,
        'has_prev': pagination.has_prev,
    }
