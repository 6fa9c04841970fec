from datetime import date

from flask import Blueprint, current_app, jsonify

from . import reporting
from .auth import roles_required, staff_only
from .errors import ValidationError
from .models import StaffRole
from .validation import query_date, query_int

stats_bp = Blueprint('stats', __name__, url_prefix='/api/stats')
reports_bp = Blueprint('reports', __name__, url_prefix='/api/reports')


@stats_bp.route('/dashboard', methods=['GET'])
@reports_bp.route('/statistics', methods=['GET'])
@staff_only
def daily_statistics():
    return jsonify(reporting.daily_statistics()), 200


@stats_bp.route('/popular-books', methods=['GET'])
@staff_only
def popular_books_summary():
    limit = query_int('limit', 5, minimum=1, maximum=100)
    return jsonify({'data': reporting.popular_books(limit)}), 200


@reports_bp.route('/popular', methods=['GET'])
@staff_only
def popular_books():
    limit = query_int('limit', 10, minimum=1, maximum=100)
    return jsonify({'data': reporting.popular_books(limit)}), 200


@stats_bp.route('/categories', methods=['GET'])
@staff_only
def category_statistics():
    return jsonify({'data': reporting.category_statistics()}), 200


@stats_bp.route('/monthly-report', methods=['GET'])
@staff_only
def monthly_report():
    year = query_int('year', date.today().year, minimum=1, maximum=9999)
    return jsonify({'year': year, 'data': reporting.monthly_report(year)}), 200


@stats_bp.route('/members', methods=['GET'])
@staff_only
def member_statistics():
    return jsonify({'data': reporting.member_statistics()}), 200


@reports_bp.route('/overdue', methods=['GET'])
@staff_only
def overdue_books():
    rows = reporting.overdue_transactions(current_app.config['FINE_PER_DAY'])
    return jsonify({'data': rows, 'count': len(rows)}), 200


@reports_bp.route('/revenue', methods=['GET'])
@roles_required(StaffRole.ADMIN)
def revenue():
    start_date = query_date('start_date')
    end_date = query_date('end_date')
    if start_date and end_date and end_date < start_date:
        raise ValidationError('end_date cannot be before start_date')
    return jsonify({'data': reporting.revenue_report(start_date, end_date)}), 200
