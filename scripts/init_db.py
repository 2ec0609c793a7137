from geoattend.db import Base, engine
from geoattend.schemas import Coordinates, Office, Student, Subject, Teacher
from geoattend.services.app_config_service import load_app_config, save_app_config
from geoattend.store import OFFICES, STUDENTS, SUBJECTS, TEACHERS, get_store


Base.metadata.create_all(bind=engine)

store = get_store()
if not store.list_records(OFFICES, Office):
    store.save(TEACHERS, 't-budi', Teacher(id='t-budi', name='Budi Santoso', nip='198001012005011001'))
    store.save(TEACHERS, 't-sari', Teacher(id='t-sari', name='Sari Wulandari', nip='198505052010012002'))
    store.save(
        OFFICES,
        'class-7a',
        Office(
            id='class-7a',
            name='VII A',
            grade='VII',
            teacher_id='t-budi',
            teacher='Budi Santoso',
            address='Gedung A Lantai 1',
            coordinates=Coordinates(latitude=-6.200000, longitude=106.816666),
        ),
    )
    for student_id, name in (('s-01', 'Ahmad'), ('s-02', 'Dewi'), ('s-03', 'Rizky')):
        store.save(STUDENTS, student_id, Student(id=student_id, name=name, class_id='class-7a', class_name='VII A'))
    for subject_id, name, teacher_id, teacher_name, day, slot in (
        ('math-7a', 'Matematika', 't-budi', 'Budi Santoso', 'Senin', '07:00 - 08:30'),
        ('ipa-7a', 'IPA', 't-sari', 'Sari Wulandari', 'Senin', '08:30 - 10:00'),
        ('bind-7a', 'Bahasa Indonesia', 't-sari', 'Sari Wulandari', 'Selasa', '07:00 - 08:30'),
    ):
        store.save(
            SUBJECTS,
            subject_id,
            Subject(
                id=subject_id,
                name=name,
                teacher_id=teacher_id,
                teacher_name=teacher_name,
                class_id='class-7a',
                class_name='VII A',
                day=day,
                time=slot,
            ),
        )
    save_app_config(store, load_app_config(store))

print('DB initialized with sample data.')
