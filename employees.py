from flask import Blueprint, jsonify
from flask_jwt_extended import jwt_required
from models import Employee

employees_bp = Blueprint('employees', __name__)


@employees_bp.route('', methods=['GET'])
@jwt_required()
def get_employees():
    """Active employees for assignment pickers"""
    employees = Employee.query.filter_by(active=True)\
        .order_by(Employee.last_name.asc(), Employee.first_name.asc()).all()

    return jsonify({
        'employees': [{
            'id': employee.id,
            'first_name': employee.first_name,
            'last_name': employee.last_name,
            'name': employee.name
        } for employee in employees]
    }), 200
