from types import SimpleNamespace

import pytest

from app import create_app
from models import (db, AssessmentComponent, Course, CourseEnrollment, CourseLearningOutcome, CourseOffering, Degree,
                    GradePoint, GradeScale, ProgramLearningOutcome, Question, Student, StudentAssessmentMark,
                    StudentQuestionMark)


@pytest.fixture()
def app():
    app = create_app({
        'TESTING': True,
        'SQLALCHEMY_DATABASE_URI': 'sqlite:///:memory:',
        'NEAR_TARGET_RATIO': 0.8
    })
    with app.app_context():
        yield app
        db.session.remove()
        db.drop_all()


@pytest.fixture()
def client(app):
    return app.test_client()


@pytest.fixture()
def degree(app):
    degree = Degree(code='BSCS', name='Computer Science')
    db.session.add(degree)
    db.session.commit()
    return degree


@pytest.fixture()
def grade_scale(app):
    scale = GradeScale(name='Default', is_active=True)
    db.session.add(scale)
    db.session.flush()
    for letter, point, low, high in [('A', '4.00', '75', '100'), ('B', '3.00', '60', '74.99'),
                                     ('C', '2.00', '50', '59.99'), ('F', '0.00', '0', '49.99')]:
        db.session.add(GradePoint(grade_scale_id=scale.id, letter_grade=letter, grade_point=point,
                                  min_percentage=low, max_percentage=high))
    db.session.commit()
    return scale


@pytest.fixture()
def offering(app):
    """Course of 3 credit hours with a 60% midterm out of 100 and a 40% final out of 50"""
    course = Course(code='CS101', title='Programming Fundamentals', credit_hours=3)
    db.session.add(course)
    db.session.flush()
    offering = CourseOffering(course_id=course.id, semester='2024-Fall', section='A')
    db.session.add(offering)
    db.session.flush()
    db.session.add_all([
        AssessmentComponent(course_offering_id=offering.id, name='Midterm', weightage=60, max_marks=100,
                            sequence_number=1),
        AssessmentComponent(course_offering_id=offering.id, name='Final', weightage=40, max_marks=50,
                            sequence_number=2)
    ])
    db.session.commit()
    return offering


def components_of(offering):
    return AssessmentComponent.query.filter_by(course_offering_id=offering.id).order_by(
        AssessmentComponent.sequence_number).all()


def add_student(registration_number, degree=None, offering=None, status='Active'):
    student = Student(registration_number=registration_number, first_name=registration_number,
                      degree_id=degree.id if degree else None)
    db.session.add(student)
    db.session.flush()
    if offering is not None:
        db.session.add(CourseEnrollment(student_id=student.id, course_offering_id=offering.id, status=status))
    db.session.commit()
    return student


def add_mark(student, component, marks=None, is_absent=False, is_exempted=False):
    mark = StudentAssessmentMark(student_id=student.id, assessment_component_id=component.id,
                                 marks_obtained=marks, is_absent=is_absent, is_exempted=is_exempted)
    db.session.add(mark)
    db.session.commit()
    return mark


def add_clo(course_id, code, target=60, plos=()):
    clo = CourseLearningOutcome(course_id=course_id, code=code, description=f'{code} description',
                                target_attainment=target)
    clo.program_outcomes.extend(plos)
    db.session.add(clo)
    db.session.commit()
    return clo


def add_plo(degree, code, target=60):
    plo = ProgramLearningOutcome(degree_id=degree.id, code=code, description=f'{code} description',
                                 target_attainment=target)
    db.session.add(plo)
    db.session.commit()
    return plo


def add_question(component, number, marks, clo=None):
    question = Question(assessment_component_id=component.id, number=number, marks=marks,
                        clo_id=clo.id if clo else None)
    db.session.add(question)
    db.session.commit()
    return question


def add_question_mark(student, question, marks):
    db.session.add(StudentQuestionMark(student_id=student.id, question_id=question.id, marks_obtained=marks))
    db.session.commit()


@pytest.fixture()
def mapped_course(degree, offering):
    """
    Two CLOs feeding two PLOs through tagged questions.

    CLO1 (target 60) -> PLO1; CLO2 (target 70) -> PLO1 and PLO2; PLO3 has no CLOs.
    Midterm: Q1 10 marks CLO1, Q2 20 marks CLO2. Final: Q3 10 marks CLO1, Q4 5 marks untagged.
    """
    plo1 = add_plo(degree, 'PLO1', target=60)
    plo2 = add_plo(degree, 'PLO2', target=60)
    plo3 = add_plo(degree, 'PLO3', target=60)
    clo1 = add_clo(offering.course_id, 'CLO1', target=60, plos=[plo1])
    clo2 = add_clo(offering.course_id, 'CLO2', target=70, plos=[plo1, plo2])
    midterm, final = components_of(offering)
    questions = [
        add_question(midterm, 1, 10, clo1),
        add_question(midterm, 2, 20, clo2),
        add_question(final, 3, 10, clo1),
        add_question(final, 4, 5)
    ]
    return SimpleNamespace(degree=degree, offering=offering, plos=[plo1, plo2, plo3], clos=[clo1, clo2],
                           questions=questions)


def score_questions(student, mapped_course, marks):
    """marks lists the marks of Q1..Q4; None leaves the question unmarked"""
    for question, value in zip(mapped_course.questions, marks):
        if value is not None:
            add_question_mark(student, question, value)
