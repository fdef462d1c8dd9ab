from decimal import Decimal

from services.averages import compute_average, period_grades, subject_breakdown


class TestComputeAverage:

    def test_empty_set_has_no_average(self):
        assert compute_average([]) is None

    def test_flat_mean_rounded_to_two_decimals(self):
        assert compute_average([18, 16]) == Decimal('17.00')
        assert compute_average([12, 13, 13]) == Decimal('12.67')

    def test_rounds_half_up(self):
        # 10.005 exactly: half-up gives 10.01, banker's rounding would give 10.00
        assert compute_average([Decimal('10'), Decimal('10.01')]) == Decimal('10.01')
        assert compute_average([Decimal('12.125'), Decimal('12.125')]) == Decimal('12.13')

    def test_accepts_floats_without_binary_noise(self):
        assert compute_average([12.5, 13]) == Decimal('12.75')
        assert compute_average([0.1, 0.2]) == Decimal('0.15')

    def test_accepts_grade_records(self, ctx, factory):
        teacher = factory.teacher()
        subject = factory.subject(teacher)
        classroom = factory.classroom()
        student = factory.graded_student(classroom, subject, [14, 15.5])

        assert compute_average(period_grades(student.id, 'trimestre_1')) == Decimal('14.75')
        assert compute_average(period_grades(student.id, 'trimestre_2')) is None


class TestSubjectBreakdown:

    def test_groups_by_subject_with_statistics(self, ctx, factory):
        teacher = factory.teacher()
        maths = factory.subject(teacher, name='Mathématiques', coefficient=5)
        french = factory.subject(teacher, name='Français')
        classroom = factory.classroom()
        student = factory.student(classroom)
        for value in (12, 16):
            factory.grade(student, maths, value)
        factory.grade(student, french, 9)

        breakdown = subject_breakdown(period_grades(student.id, 'trimestre_1'))

        assert [entry['subject']['name'] for entry in breakdown] == ['Mathématiques', 'Français']
        maths_entry = breakdown[0]
        assert maths_entry['average'] == 14.0
        assert maths_entry['grade_count'] == 2
        assert maths_entry['min_grade'] == 12.0
        assert maths_entry['max_grade'] == 16.0
        assert maths_entry['coefficient'] == 5
        assert [g['value'] for g in maths_entry['grades']] == [12.0, 16.0]

    def test_coefficient_fallback_uses_defaults_map_then_fallback(self, ctx, factory):
        teacher = factory.teacher()
        french = factory.subject(teacher, name='Français')
        latin = factory.subject(teacher, name='Latin')
        classroom = factory.classroom()
        student = factory.student(classroom)
        factory.grade(student, french, 11)
        factory.grade(student, latin, 13)

        breakdown = subject_breakdown(
            period_grades(student.id, 'trimestre_1'),
            default_coefficients={'français': 4},
            fallback_coefficient=2,
        )

        coefficients = {entry['subject']['name']: entry['coefficient'] for entry in breakdown}
        assert coefficients == {'Français': 4, 'Latin': 2}

    def test_coefficients_do_not_weight_the_overall_average(self, ctx, factory):
        teacher = factory.teacher()
        heavy = factory.subject(teacher, name='Mathématiques', coefficient=4)
        light = factory.subject(teacher, name='Musique', coefficient=1)
        classroom = factory.classroom()
        student = factory.student(classroom)
        factory.grade(student, heavy, 20)
        factory.grade(student, light, 10)

        assert compute_average(period_grades(student.id, 'trimestre_1')) == Decimal('15.00')
