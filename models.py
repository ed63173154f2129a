# --- START OF FILE models.py ---

from datetime import datetime
from flask_sqlalchemy import SQLAlchemy
from sqlalchemy import Index # Import Index explicitly

# Create a db instance to be initialized later
db = SQLAlchemy()

# Association table for the many-to-many CLO -> PLO mapping
plo_clo_mapping = db.Table(
    'plo_clo_mapping',
    db.Column('plo_id', db.Integer, db.ForeignKey('program_learning_outcome.id', ondelete='CASCADE'), primary_key=True),
    db.Column('clo_id', db.Integer, db.ForeignKey('course_learning_outcome.id', ondelete='CASCADE'), primary_key=True),
    Index('idx_plo_clo_plo_id', 'plo_id'),
    Index('idx_plo_clo_clo_id', 'clo_id'),
)

class Degree(db.Model):
    """Degree program that owns PLOs, thresholds and students"""
    __tablename__ = 'degree'
    id = db.Column(db.Integer, primary_key=True)
    code = db.Column(db.String(20), nullable=False, unique=True, index=True)
    name = db.Column(db.String(150), nullable=False, index=True)
    created_at = db.Column(db.DateTime, default=datetime.now)
    updated_at = db.Column(db.DateTime, default=datetime.now, onupdate=datetime.now)

    students = db.relationship('Student', backref='degree', lazy=True)
    program_outcomes = db.relationship('ProgramLearningOutcome', backref='degree', lazy=True,
                                       cascade="all, delete-orphan")
    thresholds = db.relationship('AttainmentThreshold', backref='degree', lazy=True,
                                 cascade="all, delete-orphan")

    def __repr__(self):
        return f"<Degree {self.code}: {self.name}>"

class Course(db.Model):
    """Course catalogue entry"""
    __tablename__ = 'course'
    id = db.Column(db.Integer, primary_key=True)
    code = db.Column(db.String(20), nullable=False, unique=True, index=True)
    title = db.Column(db.String(150), nullable=False)
    credit_hours = db.Column(db.Numeric(5, 2), nullable=False, default=3.0)
    created_at = db.Column(db.DateTime, default=datetime.now)
    updated_at = db.Column(db.DateTime, default=datetime.now, onupdate=datetime.now)

    offerings = db.relationship('CourseOffering', backref='course', lazy=True, cascade="all, delete-orphan")
    course_outcomes = db.relationship('CourseLearningOutcome', backref='course', lazy=True,
                                      cascade="all, delete-orphan")

    def __repr__(self):
        return f"<Course {self.code}: {self.title}>"

class CourseOffering(db.Model):
    """A course taught in a given semester/section"""
    __tablename__ = 'course_offering'
    id = db.Column(db.Integer, primary_key=True)
    course_id = db.Column(db.Integer, db.ForeignKey('course.id', ondelete='CASCADE'), nullable=False, index=True)
    semester = db.Column(db.String(20), nullable=False, index=True)
    section = db.Column(db.String(10), nullable=True)
    created_at = db.Column(db.DateTime, default=datetime.now)
    updated_at = db.Column(db.DateTime, default=datetime.now, onupdate=datetime.now)

    components = db.relationship('AssessmentComponent', backref='course_offering', lazy=True,
                                 cascade="all, delete-orphan")
    enrollments = db.relationship('CourseEnrollment', backref='course_offering', lazy=True,
                                  cascade="all, delete-orphan")

    def __repr__(self):
        return f"<CourseOffering {self.id} of Course {self.course_id} ({self.semester})>"

class Student(db.Model):
    """Student enrolled in a degree program"""
    __tablename__ = 'student'
    id = db.Column(db.Integer, primary_key=True)
    registration_number = db.Column(db.String(30), nullable=False, unique=True, index=True)
    first_name = db.Column(db.String(50), nullable=False)
    last_name = db.Column(db.String(50), nullable=True) # Allow null last names
    degree_id = db.Column(db.Integer, db.ForeignKey('degree.id', ondelete='SET NULL'), nullable=True, index=True)
    created_at = db.Column(db.DateTime, default=datetime.now)
    updated_at = db.Column(db.DateTime, default=datetime.now, onupdate=datetime.now)

    def __repr__(self):
        return f"<Student {self.registration_number}: {self.first_name} {self.last_name}>"

class CourseEnrollment(db.Model):
    """Student enrollment in a course offering"""
    __tablename__ = 'course_enrollment'
    id = db.Column(db.Integer, primary_key=True)
    student_id = db.Column(db.Integer, db.ForeignKey('student.id', ondelete='CASCADE'), nullable=False, index=True)
    course_offering_id = db.Column(db.Integer, db.ForeignKey('course_offering.id', ondelete='CASCADE'),
                                   nullable=False, index=True)
    status = db.Column(db.String(20), nullable=False, default='Active', index=True)
    created_at = db.Column(db.DateTime, default=datetime.now)

    __table_args__ = (
        db.UniqueConstraint('student_id', 'course_offering_id', name='_enrollment_student_offering_uc'),
        Index('idx_enrollment_offering_status', 'course_offering_id', 'status'),
    )

    def __repr__(self):
        return f"<CourseEnrollment Student {self.student_id} in Offering {self.course_offering_id} ({self.status})>"

class AssessmentComponent(db.Model):
    """Weighted assessment (quiz, midterm, final...) of a course offering"""
    __tablename__ = 'assessment_component'
    id = db.Column(db.Integer, primary_key=True)
    course_offering_id = db.Column(db.Integer, db.ForeignKey('course_offering.id', ondelete='CASCADE'),
                                   nullable=False, index=True)
    name = db.Column(db.String(100), nullable=False)
    weightage = db.Column(db.Numeric(10, 2), nullable=False) # 0-100, sums to 100 per offering
    max_marks = db.Column(db.Numeric(10, 2), nullable=False)
    sequence_number = db.Column(db.Integer, nullable=True)
    created_at = db.Column(db.DateTime, default=datetime.now)
    updated_at = db.Column(db.DateTime, default=datetime.now, onupdate=datetime.now)

    marks = db.relationship('StudentAssessmentMark', backref='component', lazy=True, cascade="all, delete-orphan")
    questions = db.relationship('Question', backref='component', lazy=True, cascade="all, delete-orphan")

    __table_args__ = (
        Index('idx_component_offering_sequence', 'course_offering_id', 'sequence_number'),
    )

    def __repr__(self):
        return f"<AssessmentComponent {self.name} ({self.weightage}%) for Offering {self.course_offering_id}>"

class StudentAssessmentMark(db.Model):
    """Marks of one student on one assessment component"""
    __tablename__ = 'student_assessment_mark'
    id = db.Column(db.Integer, primary_key=True)
    student_id = db.Column(db.Integer, db.ForeignKey('student.id', ondelete='CASCADE'), nullable=False, index=True)
    assessment_component_id = db.Column(db.Integer, db.ForeignKey('assessment_component.id', ondelete='CASCADE'),
                                        nullable=False, index=True)
    marks_obtained = db.Column(db.Numeric(10, 2), nullable=True) # Null until graded
    is_absent = db.Column(db.Boolean, nullable=False, default=False)
    is_exempted = db.Column(db.Boolean, nullable=False, default=False)
    created_at = db.Column(db.DateTime, default=datetime.now)
    updated_at = db.Column(db.DateTime, default=datetime.now, onupdate=datetime.now)

    __table_args__ = (
        db.UniqueConstraint('student_id', 'assessment_component_id', name='_mark_student_component_uc'),
    )

    def __repr__(self):
        return f"<StudentAssessmentMark {self.marks_obtained} for Student {self.student_id} on Component {self.assessment_component_id}>"

class GradeScale(db.Model):
    """Grade scale; only one should be active at a time"""
    __tablename__ = 'grade_scale'
    id = db.Column(db.Integer, primary_key=True)
    name = db.Column(db.String(100), nullable=False)
    is_active = db.Column(db.Boolean, nullable=False, default=False, index=True)
    created_at = db.Column(db.DateTime, default=datetime.now)

    points = db.relationship('GradePoint', backref='grade_scale', lazy=True, cascade="all, delete-orphan",
                             order_by='GradePoint.min_percentage.desc()')

    def __repr__(self):
        return f"<GradeScale {self.name}{' (active)' if self.is_active else ''}>"

class GradePoint(db.Model):
    """Non-overlapping percentage band of a grade scale"""
    __tablename__ = 'grade_point'
    id = db.Column(db.Integer, primary_key=True)
    grade_scale_id = db.Column(db.Integer, db.ForeignKey('grade_scale.id', ondelete='CASCADE'), nullable=False, index=True)
    letter_grade = db.Column(db.String(5), nullable=False)
    grade_point = db.Column(db.Numeric(4, 2), nullable=False)
    min_percentage = db.Column(db.Numeric(10, 2), nullable=False)
    max_percentage = db.Column(db.Numeric(10, 2), nullable=False)
    remarks = db.Column(db.String(50), nullable=True)

    __table_args__ = (
        Index('idx_grade_point_scale_min_max', 'grade_scale_id', 'min_percentage', 'max_percentage'),
    )

    def __repr__(self):
        return f"<GradePoint {self.letter_grade} ({self.min_percentage}-{self.max_percentage}%)>"

class CourseLearningOutcome(db.Model):
    """Course Learning Outcome (CLO)"""
    __tablename__ = 'course_learning_outcome'
    id = db.Column(db.Integer, primary_key=True)
    course_id = db.Column(db.Integer, db.ForeignKey('course.id', ondelete='CASCADE'), nullable=False, index=True)
    code = db.Column(db.String(20), nullable=False, index=True)
    description = db.Column(db.Text, nullable=False)
    target_attainment = db.Column(db.Numeric(10, 2), nullable=False, default=60.0)
    created_at = db.Column(db.DateTime, default=datetime.now)
    updated_at = db.Column(db.DateTime, default=datetime.now, onupdate=datetime.now)

    program_outcomes = db.relationship('ProgramLearningOutcome', secondary=plo_clo_mapping,
                                       lazy='subquery', backref=db.backref('course_outcomes', lazy=True))
    questions = db.relationship('Question', backref='course_outcome', lazy=True)

    __table_args__ = (
        Index('idx_clo_course_code', 'course_id', 'code'),
    )

    def __repr__(self):
        return f"<CourseLearningOutcome {self.code} for Course {self.course_id}>"

class ProgramLearningOutcome(db.Model):
    """Program Learning Outcome (PLO)"""
    __tablename__ = 'program_learning_outcome'
    id = db.Column(db.Integer, primary_key=True)
    degree_id = db.Column(db.Integer, db.ForeignKey('degree.id', ondelete='CASCADE'), nullable=False, index=True)
    code = db.Column(db.String(20), nullable=False, index=True)
    description = db.Column(db.Text, nullable=False)
    target_attainment = db.Column(db.Numeric(10, 2), nullable=False, default=60.0)
    created_at = db.Column(db.DateTime, default=datetime.now)
    updated_at = db.Column(db.DateTime, default=datetime.now, onupdate=datetime.now)

    __table_args__ = (
        db.UniqueConstraint('degree_id', 'code', name='_plo_degree_code_uc'),
    )

    def __repr__(self):
        return f"<ProgramLearningOutcome {self.code} for Degree {self.degree_id}>"

class Question(db.Model):
    """Question of an assessment component, optionally tagged to a CLO"""
    __tablename__ = 'question'
    id = db.Column(db.Integer, primary_key=True)
    assessment_component_id = db.Column(db.Integer, db.ForeignKey('assessment_component.id', ondelete='CASCADE'),
                                        nullable=False, index=True)
    clo_id = db.Column(db.Integer, db.ForeignKey('course_learning_outcome.id', ondelete='SET NULL'),
                       nullable=True, index=True)
    number = db.Column(db.Integer, nullable=False)
    marks = db.Column(db.Numeric(10, 2), nullable=False)

    scores = db.relationship('StudentQuestionMark', backref='question', lazy=True, cascade="all, delete-orphan")

    __table_args__ = (
        Index('idx_question_component_clo', 'assessment_component_id', 'clo_id'),
    )

    def __repr__(self):
        return f"<Question {self.number} for Component {self.assessment_component_id}>"

class StudentQuestionMark(db.Model):
    """Marks of one student on one question"""
    __tablename__ = 'student_question_mark'
    id = db.Column(db.Integer, primary_key=True)
    student_id = db.Column(db.Integer, db.ForeignKey('student.id', ondelete='CASCADE'), nullable=False, index=True)
    question_id = db.Column(db.Integer, db.ForeignKey('question.id', ondelete='CASCADE'), nullable=False, index=True)
    marks_obtained = db.Column(db.Numeric(10, 2), nullable=False)

    __table_args__ = (
        db.UniqueConstraint('student_id', 'question_id', name='_question_mark_student_question_uc'),
    )

    def __repr__(self):
        return f"<StudentQuestionMark {self.marks_obtained} for Student {self.student_id} on Question {self.question_id}>"

class AttainmentThreshold(db.Model):
    """Non-overlapping attainment band for a degree and outcome type"""
    __tablename__ = 'attainment_threshold'
    id = db.Column(db.Integer, primary_key=True)
    degree_id = db.Column(db.Integer, db.ForeignKey('degree.id', ondelete='CASCADE'), nullable=False, index=True)
    threshold_type = db.Column(db.String(3), nullable=False, index=True) # CLO, PLO or PEO
    level_name = db.Column(db.String(50), nullable=False)
    min_percentage = db.Column(db.Numeric(10, 2), nullable=False)
    max_percentage = db.Column(db.Numeric(10, 2), nullable=False)
    is_attained = db.Column(db.Boolean, nullable=False, default=True)
    created_at = db.Column(db.DateTime, default=datetime.now)
    updated_at = db.Column(db.DateTime, default=datetime.now, onupdate=datetime.now)

    __table_args__ = (
        db.UniqueConstraint('degree_id', 'threshold_type', 'level_name', name='_threshold_degree_type_level_uc'),
        Index('idx_threshold_degree_type_min_max', 'degree_id', 'threshold_type', 'min_percentage', 'max_percentage'),
    )

    def to_dict(self):
        return {
            'id': self.id,
            'degree_id': self.degree_id,
            'threshold_type': self.threshold_type,
            'level_name': self.level_name,
            'min_percentage': float(self.min_percentage),
            'max_percentage': float(self.max_percentage),
            'is_attained': self.is_attained
        }

    def __repr__(self):
        return f"<AttainmentThreshold {self.threshold_type} {self.level_name} ({self.min_percentage}-{self.max_percentage}%) for Degree {self.degree_id}>"

# --- Derived tables: recomputed and upserted by natural key ---

class CourseResult(db.Model):
    """Final result of a student in a course offering"""
    __tablename__ = 'course_result'
    id = db.Column(db.Integer, primary_key=True)
    student_id = db.Column(db.Integer, db.ForeignKey('student.id', ondelete='CASCADE'), nullable=False, index=True)
    course_offering_id = db.Column(db.Integer, db.ForeignKey('course_offering.id', ondelete='CASCADE'),
                                   nullable=False, index=True)
    total_marks = db.Column(db.Numeric(10, 2), nullable=False, default=0)
    percentage = db.Column(db.Numeric(10, 2), nullable=False, default=0)
    grade_point_id = db.Column(db.Integer, db.ForeignKey('grade_point.id', ondelete='SET NULL'), nullable=True)
    letter_grade = db.Column(db.String(5), nullable=True)
    grade_point = db.Column(db.Numeric(4, 2), nullable=True)
    credit_earned = db.Column(db.Numeric(5, 2), nullable=False, default=0)
    status = db.Column(db.String(20), nullable=True, index=True) # Pass, Fail or Incomplete
    is_published = db.Column(db.Boolean, nullable=False, default=False, index=True)
    remarks = db.Column(db.Text, nullable=True)
    calculated_at = db.Column(db.DateTime, default=datetime.now)
    updated_at = db.Column(db.DateTime, default=datetime.now, onupdate=datetime.now)

    __table_args__ = (
        db.UniqueConstraint('student_id', 'course_offering_id', name='_result_student_offering_uc'),
    )

    def to_dict(self):
        return {
            'id': self.id,
            'student_id': self.student_id,
            'course_offering_id': self.course_offering_id,
            'total_marks': float(self.total_marks),
            'percentage': float(self.percentage),
            'letter_grade': self.letter_grade,
            'grade_point': float(self.grade_point) if self.grade_point is not None else None,
            'credit_earned': float(self.credit_earned),
            'status': self.status,
            'is_published': self.is_published,
            'remarks': self.remarks
        }

    def __repr__(self):
        return f"<CourseResult {self.percentage}% ({self.status}) for Student {self.student_id} in Offering {self.course_offering_id}>"

class StudentCLOAttainment(db.Model):
    """Per student, per CLO attainment inside a course offering"""
    __tablename__ = 'student_clo_attainment'
    id = db.Column(db.Integer, primary_key=True)
    student_id = db.Column(db.Integer, db.ForeignKey('student.id', ondelete='CASCADE'), nullable=False, index=True)
    course_offering_id = db.Column(db.Integer, db.ForeignKey('course_offering.id', ondelete='CASCADE'),
                                   nullable=False, index=True)
    clo_id = db.Column(db.Integer, db.ForeignKey('course_learning_outcome.id', ondelete='CASCADE'),
                       nullable=False, index=True)
    attainment_percentage = db.Column(db.Numeric(10, 2), nullable=False, default=0)
    attainment_status = db.Column(db.String(20), nullable=False)
    total_marks_obtained = db.Column(db.Numeric(10, 2), nullable=False, default=0)
    total_possible_marks = db.Column(db.Numeric(10, 2), nullable=False, default=0)
    calculated_at = db.Column(db.DateTime, default=datetime.now)

    __table_args__ = (
        db.UniqueConstraint('student_id', 'course_offering_id', 'clo_id', name='_clo_attainment_natural_key_uc'),
        Index('idx_clo_attainment_student_clo', 'student_id', 'clo_id'),
    )

    def to_dict(self):
        return {
            'student_id': self.student_id,
            'course_offering_id': self.course_offering_id,
            'clo_id': self.clo_id,
            'attainment_percentage': float(self.attainment_percentage),
            'attainment_status': self.attainment_status,
            'total_marks_obtained': float(self.total_marks_obtained),
            'total_possible_marks': float(self.total_possible_marks)
        }

    def __repr__(self):
        return f"<StudentCLOAttainment {self.attainment_percentage}% for Student {self.student_id} on CLO {self.clo_id}>"

class StudentPLOAttainment(db.Model):
    """Per student, per PLO attainment rolled up from CLOs"""
    __tablename__ = 'student_plo_attainment'
    id = db.Column(db.Integer, primary_key=True)
    student_id = db.Column(db.Integer, db.ForeignKey('student.id', ondelete='CASCADE'), nullable=False, index=True)
    degree_id = db.Column(db.Integer, db.ForeignKey('degree.id', ondelete='CASCADE'), nullable=False, index=True)
    plo_id = db.Column(db.Integer, db.ForeignKey('program_learning_outcome.id', ondelete='CASCADE'),
                       nullable=False, index=True)
    attainment_percentage = db.Column(db.Numeric(10, 2), nullable=False, default=0)
    attainment_status = db.Column(db.String(20), nullable=False)
    total_marks_obtained = db.Column(db.Numeric(10, 2), nullable=False, default=0)
    total_possible_marks = db.Column(db.Numeric(10, 2), nullable=False, default=0)
    calculated_at = db.Column(db.DateTime, default=datetime.now)

    __table_args__ = (
        db.UniqueConstraint('student_id', 'degree_id', 'plo_id', name='_plo_attainment_natural_key_uc'),
        Index('idx_plo_attainment_degree_plo', 'degree_id', 'plo_id'),
    )

    def to_dict(self):
        return {
            'student_id': self.student_id,
            'degree_id': self.degree_id,
            'plo_id': self.plo_id,
            'attainment_percentage': float(self.attainment_percentage),
            'attainment_status': self.attainment_status,
            'total_marks_obtained': float(self.total_marks_obtained),
            'total_possible_marks': float(self.total_possible_marks)
        }

    def __repr__(self):
        return f"<StudentPLOAttainment {self.attainment_percentage}% for Student {self.student_id} on PLO {self.plo_id}>"

class ProgramPLOAttainmentSummary(db.Model):
    """Program level statistics of one PLO"""
    __tablename__ = 'program_plo_attainment_summary'
    id = db.Column(db.Integer, primary_key=True)
    degree_id = db.Column(db.Integer, db.ForeignKey('degree.id', ondelete='CASCADE'), nullable=False, index=True)
    plo_id = db.Column(db.Integer, db.ForeignKey('program_learning_outcome.id', ondelete='CASCADE'),
                       nullable=False, index=True)
    total_students = db.Column(db.Integer, nullable=False, default=0)
    students_achieved = db.Column(db.Integer, nullable=False, default=0)
    students_not_achieved = db.Column(db.Integer, nullable=False, default=0)
    average_attainment = db.Column(db.Numeric(10, 2), nullable=False, default=0)
    min_attainment = db.Column(db.Numeric(10, 2), nullable=False, default=0)
    max_attainment = db.Column(db.Numeric(10, 2), nullable=False, default=0)
    std_deviation = db.Column(db.Numeric(10, 2), nullable=False, default=0) # Population standard deviation
    total_marks_obtained = db.Column(db.Numeric(12, 2), nullable=False, default=0)
    total_possible_marks = db.Column(db.Numeric(12, 2), nullable=False, default=0)
    achievement_rate = db.Column(db.Numeric(10, 2), nullable=False, default=0)
    overall_status = db.Column(db.String(20), nullable=False, index=True) # Target Met, Near Target, Below Target
    calculated_at = db.Column(db.DateTime, default=datetime.now)

    plo = db.relationship('ProgramLearningOutcome', lazy='joined')

    __table_args__ = (
        db.UniqueConstraint('degree_id', 'plo_id', name='_program_summary_natural_key_uc'),
    )

    def to_dict(self):
        return {
            'degree_id': self.degree_id,
            'plo_id': self.plo_id,
            'plo_code': self.plo.code if self.plo else None,
            'target_attainment': float(self.plo.target_attainment) if self.plo else None,
            'total_students': self.total_students,
            'students_achieved': self.students_achieved,
            'students_not_achieved': self.students_not_achieved,
            'average_attainment': float(self.average_attainment),
            'min_attainment': float(self.min_attainment),
            'max_attainment': float(self.max_attainment),
            'std_deviation': float(self.std_deviation),
            'achievement_rate': float(self.achievement_rate),
            'overall_status': self.overall_status,
            'calculated_at': self.calculated_at.isoformat() if self.calculated_at else None
        }

    def __repr__(self):
        return f"<ProgramPLOAttainmentSummary PLO {self.plo_id} of Degree {self.degree_id}: {self.overall_status}>"

class ProgramPLOAttainmentSnapshot(db.Model):
    """Monthly copy of a program PLO summary, used for trends"""
    __tablename__ = 'program_plo_attainment_snapshot'
    id = db.Column(db.Integer, primary_key=True)
    degree_id = db.Column(db.Integer, db.ForeignKey('degree.id', ondelete='CASCADE'), nullable=False, index=True)
    plo_id = db.Column(db.Integer, db.ForeignKey('program_learning_outcome.id', ondelete='CASCADE'),
                       nullable=False, index=True)
    period = db.Column(db.String(7), nullable=False, index=True) # YYYY-MM
    total_students = db.Column(db.Integer, nullable=False, default=0)
    average_attainment = db.Column(db.Numeric(10, 2), nullable=False, default=0)
    achievement_rate = db.Column(db.Numeric(10, 2), nullable=False, default=0)
    overall_status = db.Column(db.String(20), nullable=False)
    calculated_at = db.Column(db.DateTime, default=datetime.now)

    plo = db.relationship('ProgramLearningOutcome', lazy='joined')

    __table_args__ = (
        db.UniqueConstraint('degree_id', 'plo_id', 'period', name='_program_snapshot_natural_key_uc'),
    )

    def __repr__(self):
        return f"<ProgramPLOAttainmentSnapshot PLO {self.plo_id} of Degree {self.degree_id} for {self.period}>"

# --- Surveys (indirect assessment) ---

class Survey(db.Model):
    """Survey (exit, alumni, employer...) used for indirect attainment"""
    __tablename__ = 'survey'
    id = db.Column(db.Integer, primary_key=True)
    title = db.Column(db.String(200), nullable=False)
    survey_type = db.Column(db.String(30), nullable=False, default='exit')
    degree_id = db.Column(db.Integer, db.ForeignKey('degree.id', ondelete='SET NULL'), nullable=True, index=True)
    start_date = db.Column(db.Date, nullable=True)
    end_date = db.Column(db.Date, nullable=True)
    created_at = db.Column(db.DateTime, default=datetime.now)

    questions = db.relationship('SurveyQuestion', backref='survey', lazy=True, cascade="all, delete-orphan")
    responses = db.relationship('SurveyResponse', backref='survey', lazy=True, cascade="all, delete-orphan")

    def __repr__(self):
        return f"<Survey {self.title}>"

class SurveyQuestion(db.Model):
    """Survey question; options holds JSON such as {"max_value": 5} or {"scale_size": 5}"""
    __tablename__ = 'survey_question'
    id = db.Column(db.Integer, primary_key=True)
    survey_id = db.Column(db.Integer, db.ForeignKey('survey.id', ondelete='CASCADE'), nullable=False, index=True)
    question_text = db.Column(db.Text, nullable=False)
    question_type = db.Column(db.String(20), nullable=False) # rating, likert, yes_no, text...
    options = db.Column(db.Text, nullable=True)

    answers = db.relationship('SurveyAnswer', backref='question', lazy=True, cascade="all, delete-orphan")
    outcome_mappings = db.relationship('SurveyOutcomeMapping', backref='question', lazy=True,
                                       cascade="all, delete-orphan")

    def __repr__(self):
        return f"<SurveyQuestion {self.id} ({self.question_type}) of Survey {self.survey_id}>"

class SurveyResponse(db.Model):
    """One respondent's submission of a survey"""
    __tablename__ = 'survey_response'
    id = db.Column(db.Integer, primary_key=True)
    survey_id = db.Column(db.Integer, db.ForeignKey('survey.id', ondelete='CASCADE'), nullable=False, index=True)
    respondent = db.Column(db.String(100), nullable=True)
    submitted_at = db.Column(db.DateTime, default=datetime.now)

    answers = db.relationship('SurveyAnswer', backref='response', lazy=True, cascade="all, delete-orphan")

    def __repr__(self):
        return f"<SurveyResponse {self.id} of Survey {self.survey_id}>"

class SurveyAnswer(db.Model):
    """Answer to a single question inside a response"""
    __tablename__ = 'survey_answer'
    id = db.Column(db.Integer, primary_key=True)
    response_id = db.Column(db.Integer, db.ForeignKey('survey_response.id', ondelete='CASCADE'), nullable=False, index=True)
    question_id = db.Column(db.Integer, db.ForeignKey('survey_question.id', ondelete='CASCADE'), nullable=False, index=True)
    answer_text = db.Column(db.Text, nullable=True)

    def __repr__(self):
        return f"<SurveyAnswer {self.answer_text!r} to Question {self.question_id}>"

class SurveyOutcomeMapping(db.Model):
    """Maps a survey question to a PLO or CLO"""
    __tablename__ = 'survey_outcome_mapping'
    id = db.Column(db.Integer, primary_key=True)
    question_id = db.Column(db.Integer, db.ForeignKey('survey_question.id', ondelete='CASCADE'), nullable=False, index=True)
    outcome_type = db.Column(db.String(3), nullable=False) # PLO or CLO
    outcome_id = db.Column(db.Integer, nullable=False)

    __table_args__ = (
        db.UniqueConstraint('question_id', 'outcome_type', 'outcome_id', name='_survey_mapping_uc'),
        Index('idx_survey_mapping_outcome', 'outcome_type', 'outcome_id'),
    )

    def __repr__(self):
        return f"<SurveyOutcomeMapping Question {self.question_id} -> {self.outcome_type} {self.outcome_id}>"

class IndirectAttainmentResult(db.Model):
    """Survey based attainment of one outcome"""
    __tablename__ = 'indirect_attainment_result'
    id = db.Column(db.Integer, primary_key=True)
    survey_id = db.Column(db.Integer, db.ForeignKey('survey.id', ondelete='CASCADE'), nullable=False, index=True)
    outcome_type = db.Column(db.String(3), nullable=False)
    outcome_id = db.Column(db.Integer, nullable=False)
    total_responses = db.Column(db.Integer, nullable=False, default=0)
    attainment_percentage = db.Column(db.Numeric(10, 2), nullable=True) # Null when no numeric signal
    attainment_status = db.Column(db.String(20), nullable=False)
    target_attainment = db.Column(db.Numeric(10, 2), nullable=True)
    question_details = db.Column(db.Text, nullable=True) # JSON list of per-question summaries
    calculated_at = db.Column(db.DateTime, default=datetime.now)

    survey = db.relationship('Survey', lazy='joined')

    __table_args__ = (
        db.UniqueConstraint('survey_id', 'outcome_type', 'outcome_id', name='_indirect_result_natural_key_uc'),
        Index('idx_indirect_outcome', 'outcome_type', 'outcome_id'),
    )

    def __repr__(self):
        return f"<IndirectAttainmentResult {self.outcome_type} {self.outcome_id} from Survey {self.survey_id}>"

class Log(db.Model):
    """Log model"""
    __tablename__ = 'log'
    id = db.Column(db.Integer, primary_key=True)
    action = db.Column(db.String(50), nullable=False, index=True) # Indexed
    description = db.Column(db.Text, nullable=False)
    timestamp = db.Column(db.DateTime, default=datetime.now, index=True) # Indexed

    def __repr__(self):
        return f"<Log {self.action} at {self.timestamp}>"

# --- END OF FILE models.py ---
